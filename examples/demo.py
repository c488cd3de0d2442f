#!/usr/bin/env python3
"""
RULEGEN Feature Demonstration

Compiles examples/generic.rules, loads the generated procedure and runs it
on a toy term type.
"""

from enum import Enum
from pathlib import Path

from rulegen import RuleGenerator


class Op(Enum):
    Add = "Add"
    Sub = "Sub"
    Mul = "Mul"
    Neg = "Neg"
    Const = "Const"
    Copy = "Copy"
    Lsh = "Lsh"
    Arg = "Arg"


TypeInvalid = None


class Block:
    def new_value(self, op, type, aux):
        return Value(op, type, aux, block=self)


class Value:
    def __init__(self, op, type="int", aux=None, args=(), block=None):
        self.op = op
        self.type = type
        self.aux = aux
        self.args = list(args)
        self.block = block

    def reset_args(self):
        self.args = []

    def add_arg(self, arg):
        self.args.append(arg)

    def set_type(self):
        self.type = self.args[0].type if self.args else "int"

    def __str__(self):
        parts = [self.op.name]
        if self.aux is not None:
            parts.append(f"[{self.aux}]")
        parts.extend(str(a) for a in self.args)
        return "(" + " ".join(parts) + ")" if len(parts) > 1 else self.op.name


def section(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def load(source: str, fn_name: str):
    namespace = {"Op": Op, "TypeInvalid": TypeInvalid}
    exec(compile(source, f"<{fn_name}>", "exec"), namespace)
    return namespace[fn_name]


def main():
    """Run the demonstration."""
    print("RULEGEN - Rewrite rule compiler")

    rules = Path(__file__).parent / "generic.rules"
    gen = RuleGenerator.from_file(rules, imports=[])

    section("Rule Groups")
    for line in gen.list_rules():
        print(f"  {line}")

    section("Generated Code")
    source = gen.generate("rewrite_generic")
    print(source)

    section("Rewriting")
    rewrite = load(source, "rewrite_generic")
    block = Block()
    x = Value(Op.Arg, block=block)
    y = Value(Op.Arg, block=block)
    examples = [
        Value(Op.Add, args=[x, x], block=block),
        Value(Op.Sub, args=[x, y], block=block),
        Value(Op.Neg, args=[Value(Op.Const, aux=7, block=block)], block=block),
        Value(Op.Lsh, args=[x, Value(Op.Const, aux=3, block=block)], block=block),
        Value(Op.Mul, args=[x, y], block=block),
    ]
    for v in examples:
        before = str(v)
        applied = rewrite(v)
        print(f"  {before} => {v}" if applied else f"  {before} (no rule applied)")


if __name__ == "__main__":
    main()
