"""
A tiny compiler engine for tests.

Language:

    import "./other.toy";
    var x = 1;
    var name: string = "text";
    function f(a, b) {
      var y = a + x;
      y = b;
      return y;
    }
    f(1, 2);

Top-level declarations are visible in the whole file and in files that
import it; function parameters and locals are visible after their
declaration. Types are `int` and `string`. Diagnostics: syntax errors,
undeclared identifiers, redeclarations, type mismatches and a warning for
locals that shadow an outer declaration.
"""

from __future__ import annotations

import itertools
import posixpath
import re
from dataclasses import dataclass

from compilerls.compiler.config import Remapping, apply_remappings
from compilerls.compiler.engine import (
    READ_SOURCE,
    Access,
    CompilationResult,
    CompilerEngine,
    Declaration,
    EngineDiagnostic,
    ProgramUnit,
    SecondaryLocation,
    Severity,
    SourceLocation,
    SyntaxNode,
)

SUPPORTED_VERSIONS = ("v1", "v2")
KEYWORDS = {"import", "var", "function", "return"}
TYPES = {"int", "string"}

TOKEN_RE = re.compile(
    r'(?P<ws>\s+)|(?P<comment>//[^\n]*)|(?P<string>"[^"\n]*")|(?P<number>\d+)'
    r"|(?P<name>[A-Za-z_]\w*)|(?P<punct>[{}();=:+,])|(?P<bad>.)"
)

SYNTAX_ERROR = 2314
UNDECLARED = 7576
REDECLARED = 2333
TYPE_MISMATCH = 9574
SHADOWING = 2519


@dataclass
class Token:
    kind: str
    text: str
    start: int
    end: int


def tokenize(text: str) -> list[Token]:
    tokens = []
    for match in TOKEN_RE.finditer(text):
        if match.lastgroup in ("ws", "comment"):
            continue
        tokens.append(Token(match.lastgroup, match.group(), match.start(), match.end()))
    tokens.append(Token("eof", "", len(text), len(text)))
    return tokens


class ToySyntaxError(Exception):
    def __init__(self, token: Token, message: str) -> None:
        super().__init__(message)
        self.token = token
        self.message = message


class ToyEngine(CompilerEngine):
    def __init__(self, read_file) -> None:
        super().__init__(read_file)
        self.sources: dict[str, str] = {}
        self.remappings: list[Remapping] = []
        self.target_version: str | None = None

    def set_sources(self, sources: dict[str, str]) -> None:
        self.sources = dict(sources)

    def set_remappings(self, remappings: list[Remapping]) -> None:
        self.remappings = list(remappings)

    def set_target_version(self, version: str | None) -> None:
        if version is not None and version not in SUPPORTED_VERSIONS:
            raise ValueError(f"unsupported target version {version}")
        self.target_version = version

    def compile(self) -> CompilationResult:
        self.result = CompilationResult()
        self.handles = itertools.count(1)
        self.types: dict[int, str | None] = {}
        self.type_tokens: dict[int, tuple[str, Token]] = {}

        texts = dict(self.sources)
        pending = sorted(texts)
        while pending:
            name = pending.pop(0)
            if name in self.result.units:
                continue
            root = _Parser(self, name, texts[name]).parse()
            self.result.units[name] = ProgramUnit(name, root)

            for node in root.children:
                if node.import_path is None:
                    continue
                resolved = self.resolve_import(name, node.import_path)
                node.imported_source = resolved
                if resolved not in texts:
                    read = self.read_file(READ_SOURCE, resolved)
                    if not read.success:
                        continue
                    texts[resolved] = read.content
                pending.append(resolved)

        for name in sorted(self.result.units):
            _Binder(self, self.result.units[name]).bind()
        return self.result

    def resolve_import(self, importer: str, path: str) -> str:
        path = apply_remappings(self.remappings, importer, path)
        if path.startswith("./") or path.startswith("../"):
            return posixpath.normpath(posixpath.join(posixpath.dirname(importer), path))
        return path

    def declare(self, node: SyntaxNode, name: Token, source_name: str) -> None:
        handle = next(self.handles)
        self.result.declarations[handle] = Declaration(
            handle, name.text, SourceLocation(source_name, name.start, name.end)
        )
        node.declares = handle

    def report(
        self,
        severity: Severity,
        message: str,
        location: SourceLocation,
        code: int | None = None,
        secondary: list[SecondaryLocation] | None = None,
    ) -> None:
        self.result.diagnostics.append(
            EngineDiagnostic(
                severity=severity,
                message=message,
                location=location,
                code=code,
                secondary=secondary or [],
            )
        )


class _Parser:
    def __init__(self, engine: ToyEngine, source_name: str, text: str) -> None:
        self.engine = engine
        self.source_name = source_name
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def loc(self, start: int, end: int) -> SourceLocation:
        return SourceLocation(self.source_name, start, end)

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.current
        if token.kind != "eof":
            self.pos += 1
        return token

    def check(self, text: str) -> bool:
        return self.current.kind in ("punct", "name") and self.current.text == text

    def expect(self, text: str) -> Token:
        if not self.check(text):
            raise ToySyntaxError(
                self.current,
                f"Expected '{text}' but got '{self.current.text or 'end of file'}'",
            )
        return self.advance()

    def expect_name(self) -> Token:
        if self.current.kind != "name" or self.current.text in KEYWORDS:
            raise ToySyntaxError(
                self.current,
                f"Expected identifier but got '{self.current.text or 'end of file'}'",
            )
        return self.advance()

    def parse(self) -> SyntaxNode:
        root = SyntaxNode("SourceUnit", self.loc(0, len(self.text)))
        while self.current.kind != "eof":
            statement = self.statement_with_recovery(top_level=True)
            if statement is not None:
                root.children.append(statement)
        return root

    def statement_with_recovery(self, top_level: bool) -> SyntaxNode | None:
        start = self.pos
        try:
            return self.statement(top_level)
        except ToySyntaxError as e:
            token = e.token
            self.engine.report(
                Severity.ERROR, e.message, self.loc(token.start, token.end), SYNTAX_ERROR
            )
            if self.pos == start:
                self.advance()
            while self.current.kind != "eof" and not self.check(";") and not self.check("}"):
                self.advance()
            if self.check(";"):
                self.advance()
            return None

    def statement(self, top_level: bool) -> SyntaxNode:
        token = self.current
        if token.kind == "name":
            if token.text == "import":
                if not top_level:
                    raise ToySyntaxError(token, "Imports are only allowed at file level.")
                return self.import_directive()
            if token.text == "var":
                return self.variable_declaration()
            if token.text == "function":
                if not top_level:
                    raise ToySyntaxError(token, "Nested functions are not supported.")
                return self.function_definition()
            if token.text == "return":
                if top_level:
                    raise ToySyntaxError(token, "Return outside of function.")
                return self.return_statement()
            if token.text not in KEYWORDS and self.tokens[self.pos + 1].text == "=":
                return self.assignment()

        expression = self.expression()
        end = self.expect(";")
        return SyntaxNode(
            "ExpressionStatement", self.loc(expression.location.start, end.end), [expression]
        )

    def import_directive(self) -> SyntaxNode:
        start = self.advance()
        path = self.current
        if path.kind != "string":
            raise ToySyntaxError(path, "Expected import path.")
        self.advance()
        end = self.expect(";")
        return SyntaxNode(
            "ImportDirective", self.loc(start.start, end.end), import_path=path.text[1:-1]
        )

    def variable_declaration(self) -> SyntaxNode:
        start = self.advance()
        name = self.expect_name()
        type_token = None
        if self.check(":"):
            self.advance()
            type_token = self.expect_name()
        children = []
        if self.check("="):
            self.advance()
            children.append(self.expression())
        end = self.expect(";")

        node = SyntaxNode(
            "VariableDeclaration", self.loc(start.start, end.end), children, name=name.text
        )
        self.engine.declare(node, name, self.source_name)
        if type_token is not None:
            self.engine.type_tokens[node.declares] = (self.source_name, type_token)
        return node

    def function_definition(self) -> SyntaxNode:
        start = self.advance()
        name = self.expect_name()
        self.expect("(")
        children = []
        if not self.check(")"):
            while True:
                token = self.expect_name()
                parameter = SyntaxNode(
                    "Parameter", self.loc(token.start, token.end), name=token.text
                )
                self.engine.declare(parameter, token, self.source_name)
                children.append(parameter)
                if not self.check(","):
                    break
                self.advance()
        self.expect(")")
        self.expect("{")
        while not self.check("}"):
            if self.current.kind == "eof":
                raise ToySyntaxError(self.current, "Expected '}' but got 'end of file'")
            statement = self.statement_with_recovery(top_level=False)
            if statement is not None:
                children.append(statement)
        end = self.advance()

        node = SyntaxNode(
            "FunctionDefinition", self.loc(start.start, end.end), children, name=name.text
        )
        self.engine.declare(node, name, self.source_name)
        return node

    def return_statement(self) -> SyntaxNode:
        start = self.advance()
        children = [] if self.check(";") else [self.expression()]
        end = self.expect(";")
        return SyntaxNode("Return", self.loc(start.start, end.end), children)

    def assignment(self) -> SyntaxNode:
        name = self.advance()
        self.expect("=")
        target = SyntaxNode(
            "Identifier", self.loc(name.start, name.end), name=name.text, access=Access.WRITE
        )
        value = self.expression()
        end = self.expect(";")
        return SyntaxNode("Assignment", self.loc(name.start, end.end), [target, value])

    def expression(self) -> SyntaxNode:
        operands = [self.term()]
        while self.check("+"):
            self.advance()
            operands.append(self.term())
        if len(operands) == 1:
            return operands[0]
        return SyntaxNode(
            "BinaryOperation",
            self.loc(operands[0].location.start, operands[-1].location.end),
            operands,
        )

    def term(self) -> SyntaxNode:
        token = self.current
        if token.kind == "number":
            self.advance()
            return SyntaxNode("NumberLiteral", self.loc(token.start, token.end))
        if token.kind == "string":
            self.advance()
            return SyntaxNode("StringLiteral", self.loc(token.start, token.end))
        if token.kind == "name" and token.text not in KEYWORDS:
            self.advance()
            identifier = SyntaxNode(
                "Identifier", self.loc(token.start, token.end), name=token.text, access=Access.READ
            )
            if not self.check("("):
                return identifier
            self.advance()
            arguments = []
            if not self.check(")"):
                arguments.append(self.expression())
                while self.check(","):
                    self.advance()
                    arguments.append(self.expression())
            end = self.expect(")")
            return SyntaxNode(
                "FunctionCall", self.loc(token.start, end.end), [identifier, *arguments]
            )
        raise ToySyntaxError(
            token, f"Expected expression but got '{token.text or 'end of file'}'"
        )


class _Binder:
    """Resolves identifiers to declaration handles and checks types."""

    def __init__(self, engine: ToyEngine, unit: ProgramUnit) -> None:
        self.engine = engine
        self.unit = unit
        self.globals: dict[str, int] = {}

    def declaration(self, handle: int) -> Declaration:
        return self.engine.result.declarations[handle]

    def bind(self) -> None:
        imported: dict[str, int] = {}
        for node in self.unit.root.children:
            other = self.engine.result.units.get(node.imported_source or "")
            if other is None:
                continue
            for child in other.root.children:
                if child.declares is not None:
                    imported[child.name] = child.declares

        for node in self.unit.root.children:
            if node.declares is not None:
                self.add(node, self.globals, [])

        scopes = [imported, self.globals]
        for node in self.unit.root.children:
            self.visit(node, scopes)

    def add(self, node: SyntaxNode, scope: dict[str, int], outer: list[dict[str, int]]) -> None:
        declaration = self.declaration(node.declares)
        previous = scope.get(node.name)
        if previous is not None:
            self.engine.report(
                Severity.ERROR,
                "Identifier already declared.",
                declaration.location,
                REDECLARED,
                [SecondaryLocation("The previous declaration is here:", self.declaration(previous).location)],
            )
            return

        for enclosing in reversed(outer):
            shadowed = enclosing.get(node.name)
            if shadowed is not None:
                self.engine.report(
                    Severity.WARNING,
                    "This declaration shadows an existing declaration.",
                    declaration.location,
                    SHADOWING,
                    [SecondaryLocation("The shadowed declaration is here:", self.declaration(shadowed).location)],
                )
                break
        scope[node.name] = node.declares

    def visit(self, node: SyntaxNode, scopes: list[dict[str, int]]) -> None:
        if node.kind == "FunctionDefinition":
            local: dict[str, int] = {}
            inner = [*scopes, local]
            for child in node.children:
                if child.kind == "Parameter":
                    self.add(child, local, scopes)
                else:
                    self.visit(child, inner)
        elif node.kind == "VariableDeclaration":
            for child in node.children:
                self.visit(child, scopes)
            if scopes[-1] is not self.globals:
                self.add(node, scopes[-1], scopes[:-1])
            self.check_declaration(node)
        elif node.kind == "Identifier":
            self.resolve(node, scopes)
        elif node.kind == "Assignment":
            for child in node.children:
                self.visit(child, scopes)
            target, value = node.children
            self.check_assignable(self.engine.types.get(target.references), value)
        else:
            for child in node.children:
                self.visit(child, scopes)

    def resolve(self, node: SyntaxNode, scopes: list[dict[str, int]]) -> None:
        for scope in reversed(scopes):
            if node.name in scope:
                node.references = scope[node.name]
                return
        self.engine.report(Severity.ERROR, "Undeclared identifier.", node.location, UNDECLARED)

    def expression_type(self, node: SyntaxNode) -> str | None:
        if node.kind == "NumberLiteral":
            return "int"
        if node.kind == "StringLiteral":
            return "string"
        if node.kind == "Identifier":
            return self.engine.types.get(node.references)
        if node.kind == "BinaryOperation":
            types = {self.expression_type(child) for child in node.children}
            return types.pop() if len(types) == 1 else None
        return None

    def check_declaration(self, node: SyntaxNode) -> None:
        value = node.children[0] if node.children else None
        annotated = self.engine.type_tokens.get(node.declares)
        if annotated is None:
            self.engine.types[node.declares] = (
                self.expression_type(value) if value is not None else None
            )
            return

        source_name, token = annotated
        if token.text not in TYPES:
            self.engine.report(
                Severity.ERROR,
                "Identifier not found or not unique.",
                SourceLocation(source_name, token.start, token.end),
                UNDECLARED,
            )
            return
        self.engine.types[node.declares] = token.text
        if value is not None:
            self.check_assignable(token.text, value)

    def check_assignable(self, expected: str | None, value: SyntaxNode) -> None:
        actual = self.expression_type(value)
        if expected is None or actual is None or actual == expected:
            return
        self.engine.report(
            Severity.ERROR,
            f"Type {actual} is not implicitly convertible to expected type {expected}.",
            value.location,
            TYPE_MISMATCH,
        )


def create_engine(read_file) -> ToyEngine:
    return ToyEngine(read_file)
