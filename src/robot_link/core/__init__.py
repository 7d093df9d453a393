"""Domain entities and errors of the robot link."""
