"""Tests for packet framing"""

from pytest import raises

from jdwpcalc.proto.framing import HANDSHAKE, Framer, FramingError, Packet, decode, encode
from jdwpcalc.proto.types import VM_ID_SIZES, VM_VERSION


def describe_encode():
    def test_command_packet(expect):
        packet = Packet.request(1, VM_ID_SIZES)
        expect(encode(packet)) == bytes.fromhex("0000000b 00000001 00 01 07")

    def test_command_with_payload(expect):
        packet = Packet.request(0x0102, VM_VERSION, b"\xaa\xbb")
        expect(encode(packet)) == bytes.fromhex("0000000d 00000102 00 01 01 aabb")

    def test_reply_packet(expect):
        packet = Packet.reply(7, b"\x01", error_code=13)
        expect(encode(packet)) == bytes.fromhex("0000000c 00000007 80 000d 01")

    def test_handshake_literal(expect):
        expect(HANDSHAKE) == b"JDWP-Handshake"
        expect(len(HANDSHAKE)) == 14


def describe_decode():
    def test_reply(expect):
        packet = decode(bytes.fromhex("0000000e 00000009 80 0000 010203"))
        expect(packet.is_reply) == True
        expect(packet.id) == 9
        expect(packet.error_code) == 0
        expect(packet.payload) == b"\x01\x02\x03"

    def test_command(expect):
        packet = decode(bytes.fromhex("0000000b 00000004 00 40 64"))
        expect(packet.is_reply) == False
        expect((packet.command_set, packet.command)) == (64, 100)

    def test_short_header():
        with raises(FramingError):
            decode(b"\x00\x00\x00\x0b\x00")

    def test_length_mismatch():
        with raises(FramingError):
            decode(bytes.fromhex("0000000f 00000001 80 0000 00"))


def describe_framer():
    def test_reassembles_split_packets(expect):
        data = encode(Packet.reply(1, b"abc")) + encode(Packet.reply(2))
        framer = Framer()

        framer.append_buffer(data[:5])
        expect(framer.decode_frame()) == None

        framer.append_buffer(data[5:])
        first = framer.decode_frame()
        second = framer.decode_frame()
        expect(first.id) == 1
        expect(first.payload) == b"abc"
        expect(second.id) == 2
        expect(framer.decode_frame()) == None

    def test_rejects_impossible_length():
        framer = Framer()
        framer.append_buffer(b"\x00\x00\x00\x05" + b"\x00" * 8)
        with raises(FramingError):
            framer.decode_frame()

    def test_clear_buffer(expect):
        framer = Framer()
        framer.append_buffer(encode(Packet.reply(1))[:6])
        framer.clear_buffer()
        framer.append_buffer(encode(Packet.reply(3)))
        expect(framer.decode_frame().id) == 3
