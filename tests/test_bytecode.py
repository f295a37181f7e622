"""Disassembly, assembler and ABI helpers."""
import pytest

from evm_sym.bytecode import OpCode, Program, assemble, decode_hex, encode_call, label, parse_signature, push, ref
from evm_sym.bytecode.abi import decode_value, parse_type, symbolic_calldata
from evm_sym.errors import MalformedBytecode
from evm_sym.expr import build as B


def test_disassembler_skips_push_data():
    program = Program.from_hex("0x6001600201")
    assert [ins.name for ins in program.instructions] == ["PUSH1", "PUSH1", "ADD"]
    assert [ins.offset for ins in program.instructions] == [0, 2, 4]
    assert program.instructions[1].push_value == 2


def test_jumpdest_inside_push_data_is_not_a_target():
    # PUSH1 0x5b, JUMPDEST
    program = Program.from_bytes(bytes([0x60, 0x5B, 0x5B]))
    assert program.jumpdests == frozenset({2})


def test_truncated_push_is_zero_padded():
    program = Program.from_bytes(bytes([0x61, 0xAB]))
    ins = program.instructions[0]
    assert ins.operand == b"\xab"
    assert ins.push_value == 0xAB00


def test_unknown_opcode_still_disassembles():
    program = Program.from_bytes(bytes([0x0C]))
    assert program.instructions[0].name == "UNKNOWN_0x0C"
    assert not program.instructions[0].is_known


def test_listing_format():
    program = Program.from_hex("6001 00")
    assert program.listing() == "0000: PUSH1 0x01\n0002: STOP"


def test_decode_hex_rejects_bad_input():
    with pytest.raises(MalformedBytecode):
        decode_hex("0x600")
    with pytest.raises(MalformedBytecode):
        decode_hex("zz")


def test_assembler_resolves_labels():
    code = assemble([ref("end"), OpCode.JUMP, push(0), label("end"), OpCode.STOP])
    # PUSH2 0x0005, JUMP, PUSH0, JUMPDEST, STOP
    assert code == bytes([0x61, 0x00, 0x05, 0x56, 0x5F, 0x5B, 0x00])
    assert Program.from_bytes(code).jumpdests == frozenset({5})


def test_assembler_rejects_unknown_and_duplicate_labels():
    with pytest.raises(ValueError):
        assemble([ref("missing")])
    with pytest.raises(ValueError):
        assemble([label("a"), label("a")])


def test_push_picks_shortest_width():
    assert push(0) == (OpCode.PUSH0, 0)
    assert push(0xFF) == (OpCode.PUSH1, 0xFF)
    assert push(0x100) == (OpCode.PUSH2, 0x100)


def test_selector_and_canonical_name():
    sig = parse_signature("transfer(address, uint)")
    assert sig.canonical == "transfer(address,uint256)"
    assert sig.selector.hex() == "a9059cbb"


def test_malformed_signatures_are_rejected():
    with pytest.raises(ValueError):
        parse_signature("not a signature")
    with pytest.raises(ValueError):
        parse_signature("f(uint7)")
    with pytest.raises(ValueError):
        parse_type("bytes33")


def test_encode_call():
    sig = parse_signature("add(uint256,uint256)")
    data = encode_call(sig, 1, 2)
    assert len(data) == 68
    assert data[:4] == sig.selector
    assert int.from_bytes(data[4:36], "big") == 1
    assert int.from_bytes(data[36:], "big") == 2
    with pytest.raises(ValueError):
        encode_call(sig, 1)


def test_decode_value_per_type():
    assert decode_value(parse_type("uint8"), 200) == 200
    assert decode_value(parse_type("int8"), 0xFF) == -1
    assert decode_value(parse_type("bool"), 1) is True
    assert decode_value(parse_type("address"), 0xAB) == "0x" + "00" * 19 + "ab"
    assert decode_value(parse_type("bytes2"), 0x1234 << 240) == "0x1234"
    assert decode_value(parse_type("string"), 5) == "0x" + "0" * 63 + "5"


def test_symbolic_calldata_arguments_read_back():
    calldata = symbolic_calldata(parse_signature("f(uint256,uint8)"))
    assert [a.name for a in calldata.arguments] == ["arg0", "arg1"]
    assert B.read_word(calldata.buffer, B.lit(4)) is B.var("arg0")
    assert B.read_word(calldata.buffer, B.lit(36)) is B.var("arg1")
    assert calldata.constraints == [B.ult(B.var("arg1"), B.lit(256))]


def test_unshaped_calldata_is_bounded():
    calldata = symbolic_calldata(None)
    assert calldata.buffer is B.buf_var("calldata")
    assert len(calldata.constraints) == 1
