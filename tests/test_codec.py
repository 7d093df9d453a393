"""Frame codec tests: round trip, determinism, totality of decode, stream framing."""

import random

import pytest

from robot_link.core.entities import RobotState, StateDelta
from robot_link.core.errors import DecodeError, EncodeError
from robot_link.serial_io.codec import BinaryFrameCodec, TextFrameCodec, get_codec

CODECS = [BinaryFrameCodec(), TextFrameCodec()]

SAMPLE_STATES = [
    RobotState(),
    RobotState(0, 0, 0, 0, 0, 0, 0),
    RobotState(180, 180, 180, 180, 180, 180, 100, True, True, True, True, True, True),
    RobotState(joint_1=45, joint_4=63, speed=1, do_2=True, di_3=True),
]


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
@pytest.mark.parametrize("state", SAMPLE_STATES)
def test_decode_inverts_encode(codec, state):
    assert codec.decode(codec.encode(state)) == state


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
def test_encoding_is_deterministic(codec):
    state = RobotState(joint_3=12, do_1=True)
    assert codec.encode(state) == codec.encode(RobotState(joint_3=12, do_1=True))


def test_binary_layout_matches_controller_firmware():
    state = RobotState(10, 20, 30, 40, 50, 60, 70, do_1=True, di_3=True)
    frame = BinaryFrameCodec().encode(state)
    assert frame == bytes([0xFD, 10, 20, 30, 40, 50, 60, 0, 0, 1, 1, 0, 0, 70, 0xFE])


def test_text_layout():
    frame = TextFrameCodec().encode(RobotState(1, 2, 3, 4, 5, 6, 7, do_3=True, di_1=True))
    assert frame == b"S,1,2,3,4,5,6,7,0,0,1,1,0,0\n"


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
def test_encode_delta_overlays_base(codec):
    base = RobotState(joint_2=33, di_1=True)
    delta = StateDelta({"joint_1": 45})
    assert codec.encode(delta, base=base) == codec.encode(RobotState(joint_1=45, joint_2=33, di_1=True))


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
def test_encode_delta_requires_base(codec):
    with pytest.raises(EncodeError):
        codec.encode(StateDelta({"joint_1": 45}))


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
@pytest.mark.parametrize(
    "state",
    [RobotState(joint_1=181), RobotState(joint_6=-1), RobotState(speed=101), RobotState(do_1=2)],
)
def test_encode_asserts_domain_instead_of_clamping(codec, state):
    with pytest.raises(EncodeError):
        codec.encode(state)


def _binary_malformed():
    codec = BinaryFrameCodec()
    valid = codec.encode(RobotState())
    cases = [valid[:n] for n in range(len(valid))]
    cases.append(valid + b"\x00")
    cases.append(b"\x00" + valid[1:])
    cases.append(valid[:-1] + b"\x00")
    for index in range(1, 7):
        mangled = bytearray(valid)
        mangled[index] = 181
        cases.append(bytes(mangled))
    for index in range(7, 13):
        mangled = bytearray(valid)
        mangled[index] = 2
        cases.append(bytes(mangled))
    mangled = bytearray(valid)
    mangled[13] = 101
    cases.append(bytes(mangled))
    cases.append(codec.encode_state_request())

    rng = random.Random(1234)
    for _ in range(300):
        garbage = bytearray(rng.randrange(256) for _ in range(rng.randrange(0, 40)))
        if garbage:
            garbage[0] = 0x00
        cases.append(bytes(garbage))
    return cases


def _text_malformed():
    codec = TextFrameCodec()
    valid = codec.encode(RobotState())
    cases = [valid[:n] for n in range(len(valid) - 1)]
    cases += [
        b"S,1,2,3\n",
        b"X" + valid[1:],
        valid.replace(b"90", b"999", 1),
        valid.replace(b",50,", b",150,", 1),
        b"S,a,b,c,d,e,f,g,h,i,j,k,l,m\n",
        b"S,90,90,90,90,90,90,50,0,0,2,0,0,0\n",
        b"\xff\xfe\xfd\n",
        b"?\n",
    ]
    rng = random.Random(99)
    for _ in range(300):
        cases.append(bytes(rng.randrange(256) for _ in range(rng.randrange(0, 40))).replace(b"S", b"s"))
    return cases


@pytest.mark.parametrize(
    "codec, frames",
    [(BinaryFrameCodec(), _binary_malformed()), (TextFrameCodec(), _text_malformed())],
    ids=["binary", "text"],
)
def test_decode_is_total_over_malformed_input(codec, frames):
    for frame in frames:
        with pytest.raises(DecodeError):
            codec.decode(frame)


@pytest.mark.parametrize("codec", CODECS, ids=lambda c: c.name)
@pytest.mark.parametrize("value", [None, "S,1,2", 42, [0xFD, 0xFE], object()])
def test_decode_rejects_non_bytes(codec, value):
    with pytest.raises(DecodeError):
        codec.decode(value)


def test_binary_extract_resynchronises_past_garbage_and_truncation():
    codec = BinaryFrameCodec()
    first = codec.encode(RobotState(joint_1=1))
    cut = codec.encode(RobotState(joint_1=2))[:7]
    last = codec.encode(RobotState(joint_1=3))
    buffer = bytearray(b"\x01\x02\xfe" + first + cut + last)

    assert codec.extract_frames(buffer) == [first, last]
    assert buffer == bytearray()


def test_binary_extract_waits_for_partial_frame():
    codec = BinaryFrameCodec()
    frame = codec.encode(RobotState(joint_1=63))
    buffer = bytearray(frame[:10])

    assert codec.extract_frames(buffer) == []
    assert len(buffer) == 10
    buffer.extend(frame[10:])
    assert codec.extract_frames(buffer) == [frame]


def test_binary_extract_separates_requests_from_state_frames():
    codec = BinaryFrameCodec()
    frame = codec.encode(RobotState())
    buffer = bytearray(codec.encode_state_request() + frame)

    frames = codec.extract_frames(buffer)

    assert frames == [codec.encode_state_request(), frame]
    assert codec.is_state_request(frames[0])
    assert not codec.is_state_request(frames[1])


def test_text_extract_splits_lines_and_drops_overlong_garbage():
    codec = TextFrameCodec()
    frame = codec.encode(RobotState())
    buffer = bytearray(frame + b"\n" + codec.encode_state_request() + b"partial")

    assert codec.extract_frames(buffer) == [frame, codec.encode_state_request()]
    assert buffer == bytearray(b"partial")

    buffer.extend(b"x" * 200)
    assert codec.extract_frames(buffer) == []
    assert buffer == bytearray()


def test_get_codec_by_name():
    assert isinstance(get_codec("binary"), BinaryFrameCodec)
    assert isinstance(get_codec("text"), TextFrameCodec)
    with pytest.raises(ValueError):
        get_codec("morse")
