"""
RULEGEN - Rewrite rule compiler

Compiles a small rule language into a Python procedure that rewrites one
term in place using the first rule that matches.

Quick Start:
    from rulegen import RuleGenerator

    gen = RuleGenerator.from_text('''
        (Add x x) -> (Mul x (Const [2]))
        (Sub x y) -> (Add x (Neg y))
    ''')
    source = gen.generate("rewrite_generic")

Rule Syntax:
    // Comments run to end of line
    <match> [&& <condition>] -> <result>

Pattern Syntax:
    (Op arg...)   - operator node with positional children
    x             - bind x; a repeated x must be the same term (by identity)
    <t>, <{code}> - type field: bind/check, or set in a result
    [a], [{code}] - aux field: bind/check, or set in a result
    {code}        - child that must be (or is built as) this exact value

The generated procedure expects terms with .op, .type, .aux and .args,
plus reset_args(), add_arg(), set_type() and an allocator (by default
v.block.new_value(op, type, aux)).
"""

__version__ = "0.1.0"

from .errors import (
    RulegenError,
    RuleSourceError,
    MalformedRule,
    MalformedExpression,
    GeneratedSyntaxError,
)

from .patterns import (
    split_tokens,
    parse_pattern,
    format_pattern,
    OpPattern,
    Variable,
    TypeConstraint,
    AuxConstraint,
    LiteralPin,
    OpaqueCode,
)

from .rules import (
    Rule,
    RuleLine,
    RuleGroup,
    RuleSet,
    read_rules,
    load_rules_from_file,
    split_rule,
)

from .codegen import (
    Target,
    CodeWriter,
    Environment,
    compile_match,
    compile_result,
)

from .generator import (
    RuleGenerator,
    generate_source,
    format_source,
    DEFAULT_IMPORTS,
)

# Public API
__all__ = [
    # Version
    "__version__",
    # Errors
    "RulegenError",
    "RuleSourceError",
    "MalformedRule",
    "MalformedExpression",
    "GeneratedSyntaxError",
    # Patterns
    "split_tokens",
    "parse_pattern",
    "format_pattern",
    "OpPattern",
    "Variable",
    "TypeConstraint",
    "AuxConstraint",
    "LiteralPin",
    "OpaqueCode",
    # Rules
    "Rule",
    "RuleLine",
    "RuleGroup",
    "RuleSet",
    "read_rules",
    "load_rules_from_file",
    "split_rule",
    # Code generation
    "Target",
    "CodeWriter",
    "Environment",
    "compile_match",
    "compile_result",
    # Generator
    "RuleGenerator",
    "generate_source",
    "format_source",
    "DEFAULT_IMPORTS",
]
