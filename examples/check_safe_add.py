"""Sample check script demonstrating programmatic usage."""
from evm_sym import Config, run_check, run_equivalence
from evm_sym.bytecode import OpCode, assemble, label, push, ref
from evm_sym.report.generator import ReportGenerator

SIGNATURE = "add(uint256,uint256)"


def faulty_add() -> bytes:
    # add(x, y) hitting INVALID when the sum wraps
    return assemble([
        push(4), OpCode.CALLDATALOAD, push(0x24), OpCode.CALLDATALOAD,
        OpCode.DUP2, OpCode.ADD, OpCode.DUP1, OpCode.DUP3, OpCode.GT,
        ref("bad"), OpCode.JUMPI,
        OpCode.PUSH0, OpCode.MSTORE, push(32), OpCode.PUSH0, OpCode.RETURN,
        label("bad"),
        OpCode.INVALID,
    ])


def unchecked_add() -> bytes:
    return assemble([
        push(4), OpCode.CALLDATALOAD, push(0x24), OpCode.CALLDATALOAD, OpCode.ADD,
        OpCode.PUSH0, OpCode.MSTORE, push(32), OpCode.PUSH0, OpCode.RETURN,
    ])


def demo() -> None:
    config = Config(signature=SIGNATURE)

    report = run_check(faulty_add(), config)
    print(report.summary())
    for failure in report.failures:
        if failure.counterexample is not None:
            print(f"  {failure.description}: {failure.counterexample.describe()}")

    equivalence = run_equivalence(faulty_add(), unchecked_add(), config)
    print(equivalence.summary())

    print(ReportGenerator("FaultyAdd").to_markdown(report))


if __name__ == "__main__":
    demo()
