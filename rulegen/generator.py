"""
Rule-set emitter for RULEGEN.

Turns a RuleSet into a Python module defining one rewrite procedure:

    def rewrite(v):
        if v.op == Op.Add:
            if _rewrite_rule0(v):
                return True
        elif v.op == Op.Sub:
            if _rewrite_rule1(v):
                return True
        return False

Each rule becomes a helper function that returns False as soon as a
check fails and True after rewriting v. Groups are emitted in sorted tag
order and rules in file order, so the first matching rule wins and the
output is reproducible.

Example:
    from rulegen import RuleGenerator

    gen = RuleGenerator.from_text('''
        (Add x x) -> (Mul x (Const [2]))
        (Sub x y) -> (Add x (Neg y))
    ''')
    print(gen.generate("rewrite_generic"))
"""

import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from .codegen import (
    Allocator, CodeWriter, Environment, Target, compile_match, compile_result,
)
from .errors import GeneratedSyntaxError
from .patterns import format_pattern
from .rules import (
    RuleGroup, RuleLine, RuleSet, group_key, load_rules_from_file, read_rules,
    split_rule,
)

logger = logging.getLogger(__name__)

DEFAULT_IMPORTS = ("from .ssa import Op, TypeInvalid",)


# ============================================================
# Formatter / validator
# ============================================================

_BLANK_RUNS = re.compile(r"\n{4,}")


def format_source(source: str, filename: str = "<generated>") -> str:
    """
    Tidy generated source and check that it compiles.

    Strips trailing whitespace, collapses runs of blank lines to two and
    ends the text with a single newline.

    Raises GeneratedSyntaxError with the compiler's diagnostic.
    """
    lines = [line.rstrip() for line in source.splitlines()]
    text = _BLANK_RUNS.sub("\n\n\n", "\n".join(lines)).strip("\n") + "\n"
    try:
        compile(text, filename, "exec")
    except SyntaxError as e:
        raise GeneratedSyntaxError(e.msg, e.lineno, e.text) from e
    return text


# ============================================================
# Emitter
# ============================================================

def _rule_function_name(fn_name: str, rulenum: int) -> str:
    return f"_{fn_name}_rule{rulenum}"


def emit_rule(writer: CodeWriter, rule_line: RuleLine, func: str,
              target: Target) -> None:
    """Emit the helper function for one rule."""
    rule = split_rule(rule_line)
    with writer.block(f"def {func}(v):"):
        writer.comment(f"match: {format_pattern(rule.match)}")
        writer.comment(f"cond: {rule.cond}")
        writer.comment(f"result: {format_pattern(rule.result)}")

        env = Environment(reserved=target.names())
        compile_match(rule.match, "v", writer, env, top=True, target=target)
        if rule.cond:
            writer.guard(f"not ({rule.cond})")
        compile_result(rule.result, writer, env, Allocator(env), top=True,
                       target=target)
        writer.line("return True")


def emit_dispatch(writer: CodeWriter, fn_name: str, groups: List[RuleGroup],
                  target: Target) -> None:
    """Emit the top-level procedure switching on the term's operator."""
    with writer.block(f"def {fn_name}(v):"):
        writer.line('"""Apply the first matching rule to v. Return True if v was rewritten."""')
        rulenum = 0
        keyword = "if"
        for group in groups:
            with writer.block(f"{keyword} v.op == {target.op(group.tag)}:"):
                for _ in group:
                    with writer.block(f"if {_rule_function_name(fn_name, rulenum)}(v):"):
                        writer.line("return True")
                    rulenum += 1
            keyword = "elif"
        writer.line("return False")


def generate_source(rule_set: RuleSet, fn_name: str,
                    imports: Sequence[str] = DEFAULT_IMPORTS,
                    target: Optional[Target] = None,
                    header: Sequence[str] = ()) -> str:
    """
    Generate the (unformatted) module source for rule_set.

    Args:
        rule_set: Grouped rule lines
        fn_name: Name of the generated procedure
        imports: Import lines placed after the header
        target: Term interface naming conventions
        header: Comment lines at the top of the module
    """
    target = target or Target()
    groups = rule_set.groups()
    writer = CodeWriter()

    for text in header:
        writer.comment(text)
    for line in imports:
        writer.line(line)
    writer.line()
    writer.line()

    emit_dispatch(writer, fn_name, groups, target)

    rulenum = 0
    for group in groups:
        for rule_line in group:
            writer.line()
            writer.line()
            emit_rule(writer, rule_line, _rule_function_name(fn_name, rulenum), target)
            rulenum += 1

    logger.debug("compiled %d rules in %d groups into %s()",
                 rulenum, len(groups), fn_name)
    return writer.getvalue()


class RuleGenerator:
    """
    Loads rule files and generates rewrite procedures from them.

    Example:
        gen = RuleGenerator.from_file("generic.rules")
        source = gen.generate("rewrite_generic")

        # Generated code for a different term API
        gen = RuleGenerator(op_prefix="Opcode.", imports=["from ir import *"])
    """

    def __init__(self, op_prefix: str = "Op.", imports: Sequence[str] = DEFAULT_IMPORTS,
                 invalid_type: str = "TypeInvalid", allocator: str = "v.block.new_value"):
        """
        Initialize a RuleGenerator.

        Args:
            op_prefix: Prefix for operator constants ("Op." gives Op.Add)
            imports: Import lines the generated module starts with
            invalid_type: Type given to freshly allocated nodes
            allocator: Expression called to allocate a node
        """
        self.target = Target(op_prefix=op_prefix, invalid_type=invalid_type,
                             allocator=allocator)
        self.imports = list(imports)
        self._lines: List[RuleLine] = []
        self._sources: List[str] = []

    def load_text(self, text: str) -> 'RuleGenerator':
        """Add rules from rule-file text. Returns self for chaining."""
        for group in read_rules(text):
            self._lines.extend(group)
        return self

    def load_file(self, path: Union[str, Path]) -> 'RuleGenerator':
        """Add rules from a file. Returns self for chaining."""
        for group in load_rules_from_file(path):
            self._lines.extend(group)
        self._sources.append(str(path))
        return self

    def rule_set(self) -> RuleSet:
        """Group the loaded rules by operator, keeping load order per group."""
        groups = {}
        for line in self._lines:
            groups.setdefault(group_key(line.text), []).append(line)
        return RuleSet({tag: RuleGroup(tag, lines) for tag, lines in groups.items()})

    def groups(self) -> List[str]:
        """Operator tags that have at least one rule, sorted."""
        return self.rule_set().tags()

    def list_rules(self) -> List[str]:
        """Human-readable listing of the rules, grouped by operator."""
        lines = []
        for group in self.rule_set():
            lines.append(f"{group.tag} ({len(group)} rules)")
            for rule in group:
                lines.append(f"  {rule.lineno}: {rule.text}")
        return lines

    def generate(self, fn_name: str, source: Optional[str] = None,
                 argv: Optional[Sequence[str]] = None) -> str:
        """
        Generate the formatted module source defining fn_name(v).

        Args:
            fn_name: Name of the generated procedure
            source: Rule file named in the header (defaults to the loaded files)
            argv: Command line recorded in the header

        Raises MalformedRule, MalformedExpression or GeneratedSyntaxError.
        """
        if source is None:
            source = ", ".join(self._sources) or "<text>"
        if argv is None:
            argv = [source, fn_name]
        header = [
            f"autogenerated from {source}: do not edit!",
            f"generated with: rulegen {' '.join(argv)}",
        ]
        text = generate_source(self.rule_set(), fn_name, imports=self.imports,
                               target=self.target, header=header)
        return format_source(text, filename=f"<{fn_name}>")

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, tag: str) -> bool:
        return tag in self.rule_set()

    def __iter__(self) -> Iterator[RuleLine]:
        return iter(self._lines)

    def __repr__(self) -> str:
        return f"RuleGenerator({len(self._lines)} rules, {self.target!r})"

    @classmethod
    def from_text(cls, text: str, **kwargs) -> 'RuleGenerator':
        """Create a generator from rule-file text."""
        return cls(**kwargs).load_text(text)

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> 'RuleGenerator':
        """Create a generator from a rule file."""
        return cls(**kwargs).load_file(path)
