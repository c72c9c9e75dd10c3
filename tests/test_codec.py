import json

import pytest

from kerits.chain.kel import KeyEventLog
from kerits.codec.stream import (
    decode_events,
    from_json_array,
    parse_stream,
    serialize_stream,
    to_json_array,
)
from kerits.core.errors import MalformedInput
from kerits.core.events import Inception, Interaction, Rotation
from kerits.core.said import verify
from kerits.crypto.keys import Signer


@pytest.fixture
def events():
    keys = [Signer.generate() for _ in range(3)]
    kel = KeyEventLog()
    kel.incept([keys[0].verfer], [keys[1].next_digest])
    kel.interact()
    kel.rotate([keys[1].verfer], [keys[2].next_digest])
    return kel.get_chain()


def test_serialize_stream_framing(events):
    stream = serialize_stream(events)
    assert stream.startswith(b"-KERI10JSON")
    assert stream.count(b"-KERI10JSON") == len(events)


def test_stream_roundtrip_is_byte_exact(events):
    stream = serialize_stream(events)
    bodies = parse_stream(stream)
    assert bodies == [e.to_dict() for e in events]
    assert serialize_stream(bodies) == stream
    assert all(verify(b, labels=("i",) if b["t"] == "icp" else ()) for b in bodies)


def test_stream_and_array_are_equivalent(events):
    array = to_json_array(events)
    assert json.loads(array) == [e.to_dict() for e in events]
    assert from_json_array(array) == parse_stream(serialize_stream(events))
    assert parse_stream(array) == from_json_array(array)
    assert serialize_stream(from_json_array(array)) == serialize_stream(events)


def test_parse_skips_noise_and_truncates_tail(events):
    stream = serialize_stream(events)
    noisy = b"garbage\n" + stream + b'-KERI10JSON0000fd_{"v":"KERI10JSON0000fd_","t":"ixn'
    assert parse_stream(noisy) == [e.to_dict() for e in events]


def test_parse_recovers_from_unclosed_brace_in_noise(events):
    expected = [e.to_dict() for e in events]
    assert parse_stream(b"junk{ " + serialize_stream(events)) == expected
    assert parse_stream("junk{ " + to_json_array(events)) == expected

    between = serialize_stream(events[:1]) + b"{oops " + serialize_stream(events[1:])
    assert parse_stream(between) == expected


def test_parse_drops_truncated_array_element(events):
    array = to_json_array(events)
    cut = array[:array.rindex("{") + 20]
    assert parse_stream(cut) == [e.to_dict() for e in events[:-1]]


def test_parse_is_string_aware():
    text = '{"a":"}{\\"x"}  {"b":{"c":"{"}}'
    assert parse_stream(text) == [{"a": '}{"x'}, {"b": {"c": "{"}}]


def test_parse_rejects_balanced_invalid_object():
    with pytest.raises(MalformedInput):
        parse_stream('{"a":1}{"b":1,}')
    with pytest.raises(MalformedInput):
        parse_stream(b"\xff\xfe{}")


def test_parse_empty():
    assert parse_stream(b"") == []
    assert parse_stream("no objects here") == []


def test_from_json_array_rejects_non_arrays():
    with pytest.raises(MalformedInput):
        from_json_array('{"a":1}')
    with pytest.raises(MalformedInput):
        from_json_array("[1, 2]")
    with pytest.raises(MalformedInput):
        from_json_array("[{")


def test_decode_events(events):
    decoded = decode_events(serialize_stream(events))
    assert [type(e) for e in decoded] == [Inception, Interaction, Rotation]
    assert [e.said for e in decoded] == [e.said for e in events]
    assert [e.said for e in decode_events([e.to_dict() for e in events])] == [e.said for e in events]


def test_serialize_requires_version():
    with pytest.raises(MalformedInput):
        serialize_stream([{"d": "x"}])
