"""
MFlow Compiler

Features:
- Shapes as expressions (circle, rect, line, triangle)
- Variables, functions, if/else and counted repeat loops
- Named scenes and per-frame animate blocks driving a shared transform state
- Error recovery: syntax errors are collected line by line, semantic errors
  across the whole program
- Output: JavaScript for an HTML canvas 2-D context (plus a preview page)

Grammar (EBNF):
    program     ::= statement*
    statement   ::= let_stmt | fn_decl | return_stmt | if_stmt | repeat_stmt
                  | animate_blk | scene_blk | expression
    let_stmt    ::= 'let' IDENTIFIER '=' expression
    fn_decl     ::= 'fn' IDENTIFIER '(' [IDENTIFIER (',' IDENTIFIER)*] ')' block
    return_stmt ::= 'return' [expression]
    if_stmt     ::= 'if' expression block ['else' (block | if_stmt)]
    repeat_stmt ::= 'repeat' expression block
    animate_blk ::= 'animate' '{' command* '}'
    command     ::= 'move' primary [direction] | 'rotate' primary
                  | 'scale' primary | 'fade' primary
    direction   ::= 'up' | 'down' | 'left' | 'right'
    scene_blk   ::= 'scene' IDENTIFIER block
    block       ::= '{' statement* '}'
    expression  ::= additive [('==' | '!=' | '<' | '>' | '<=' | '>=') additive]
    additive    ::= term (('+' | '-') term)*
    term        ::= call (('*' | '/' | '%') call)*
    call        ::= shape ['(' [expression (',' expression)*] ')']
    shape       ::= circle | rect | line | triangle | primary
    circle      ::= 'circle' 'at' point 'size' expression 'color' expression
    rect        ::= 'rect' 'at' point 'width' expression 'height' expression
                    'color' expression
    line        ::= 'line' point point 'color' expression
    triangle    ::= 'triangle' point point point 'color' expression
    point       ::= '(' expression ',' expression ')'
    primary     ::= NUMBER | STRING | COLOR | IDENTIFIER | '(' expression ')'

Example inputs:
    "circle at (200, 200) size 50 color #00FFFF"
    "let r = 10\\nrepeat 3 { circle at (r, r) size r color #FF00FF }"
    "animate { move 2 right rotate 1 }"
"""

from __future__ import annotations
import json
import math
import os
import string
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, auto
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Set, Tuple, Union


# =============================================================================
# 1. SOURCE LOCATION & ERROR HANDLING
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    line: int
    column: int

    def __str__(self) -> str:
        return f"line {self.line}, column {self.column}"


@dataclass
class SourceFile:
    name: str
    content: str

    def __post_init__(self):
        self.lines = self.content.split('\n')

    def get_line(self, n: int) -> str:
        return self.lines[n - 1] if 1 <= n <= len(self.lines) else ""


class ErrorKind(Enum):
    SYNTAX = auto()
    SEMANTIC = auto()
    INTERNAL = auto()


@dataclass
class Message:
    kind: ErrorKind
    text: str
    location: Optional[SourceLocation] = None
    hint: Optional[str] = None

    def __str__(self) -> str:
        where = f" at {self.location}" if self.location else ""
        return f"{self.kind.name.capitalize()} error{where}: {self.text}"


class MessageCollector:
    def __init__(self, source: Optional[SourceFile] = None):
        self.source = source
        self.errors: List[Message] = []

    def error(self, text: str, loc: Optional[SourceLocation] = None,
              hint: str = None, kind: ErrorKind = ErrorKind.SEMANTIC):
        self.errors.append(Message(kind, text, loc, hint))

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def format(self, msg: Message) -> str:
        """Render a message with the offending source line and a caret under the column."""
        out = [str(msg)]
        if self.source and msg.location:
            text = self.source.get_line(msg.location.line).rstrip('\r')
            if text.strip():
                # Columns count a tab as one character.
                out.append(f"    {text.expandtabs(1)}")
                out.append("    " + " " * (msg.location.column - 1) + "^")
        if msg.hint:
            out.append(f"    hint: {msg.hint}")
        return '\n'.join(out)


class InternalCompilerError(Exception):
    """A pipeline invariant was broken (e.g. an AST node kind nobody handles)."""

    def __init__(self, text: str, location: Optional[SourceLocation] = None):
        self.message = Message(ErrorKind.INTERNAL, text, location)
        super().__init__(str(self.message))


# =============================================================================
# 2. LEXER
# =============================================================================

class TokenType(Enum):
    # Literals
    NUMBER = auto()
    STRING = auto()
    COLOR = auto()
    IDENTIFIER = auto()

    # Keywords
    LET = auto()
    FN = auto()
    RETURN = auto()
    IF = auto()
    ELSE = auto()
    REPEAT = auto()
    ANIMATE = auto()
    SCENE = auto()

    # Shapes
    CIRCLE = auto()
    RECT = auto()
    LINE = auto()
    TRIANGLE = auto()

    # Animation commands
    MOVE = auto()
    ROTATE = auto()
    SCALE = auto()
    FADE = auto()

    # Directions
    UP = auto()
    DOWN = auto()
    LEFT = auto()
    RIGHT = auto()

    # Shape clauses
    AT = auto()
    SIZE = auto()
    WIDTH = auto()
    HEIGHT = auto()
    COLOR_PROP = auto()
    SPEED = auto()

    # Operators
    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    MODULO = auto()
    ASSIGN = auto()
    EQUAL = auto()
    NOT_EQUAL = auto()
    LESS_THAN = auto()
    GREATER_THAN = auto()
    LESS_EQUAL = auto()
    GREATER_EQUAL = auto()

    # Delimiters
    LPAREN = auto()
    RPAREN = auto()
    LBRACE = auto()
    RBRACE = auto()
    COMMA = auto()
    DOT = auto()
    NEWLINE = auto()

    EOF = auto()
    ILLEGAL = auto()


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    location: SourceLocation

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r})"


class Lexer:
    KEYWORDS = {
        'let': TokenType.LET, 'fn': TokenType.FN, 'return': TokenType.RETURN,
        'if': TokenType.IF, 'else': TokenType.ELSE, 'repeat': TokenType.REPEAT,
        'animate': TokenType.ANIMATE, 'scene': TokenType.SCENE,
        'circle': TokenType.CIRCLE, 'rect': TokenType.RECT,
        'line': TokenType.LINE, 'triangle': TokenType.TRIANGLE,
        'move': TokenType.MOVE, 'rotate': TokenType.ROTATE,
        'scale': TokenType.SCALE, 'fade': TokenType.FADE,
        'up': TokenType.UP, 'down': TokenType.DOWN,
        'left': TokenType.LEFT, 'right': TokenType.RIGHT,
        'at': TokenType.AT, 'size': TokenType.SIZE,
        'width': TokenType.WIDTH, 'height': TokenType.HEIGHT,
        'color': TokenType.COLOR_PROP, 'speed': TokenType.SPEED,
    }
    TWO_CHAR = {
        '==': TokenType.EQUAL, '!=': TokenType.NOT_EQUAL,
        '<=': TokenType.LESS_EQUAL, '>=': TokenType.GREATER_EQUAL,
    }
    ONE_CHAR = {
        '+': TokenType.PLUS, '-': TokenType.MINUS, '*': TokenType.MULTIPLY,
        '/': TokenType.DIVIDE, '%': TokenType.MODULO, '=': TokenType.ASSIGN,
        '<': TokenType.LESS_THAN, '>': TokenType.GREATER_THAN,
        '(': TokenType.LPAREN, ')': TokenType.RPAREN,
        '{': TokenType.LBRACE, '}': TokenType.RBRACE,
        ',': TokenType.COMMA, '.': TokenType.DOT,
    }
    DIGITS = set(string.digits)
    HEX_DIGITS = set(string.hexdigits)
    WORD_START = set(string.ascii_letters + '_')
    WORD_CHARS = WORD_START | DIGITS

    def __init__(self, source: Union[str, SourceFile]):
        self.content = source.content if isinstance(source, SourceFile) else source
        self.pos = 0
        self.line = 1
        self.column = 1

    def loc(self) -> SourceLocation:
        return SourceLocation(self.line, self.column)

    def at_end(self) -> bool:
        return self.pos >= len(self.content)

    def peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        return self.content[idx] if idx < len(self.content) else '\0'

    def advance(self) -> str:
        if self.pos >= len(self.content):
            return '\0'
        ch = self.content[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        return ch

    def skip_ws(self):
        while True:
            while self.peek() in ' \t\r':
                self.advance()
            if self.peek() == '/' and self.peek(1) == '/':
                while not self.at_end() and self.peek() != '\n':
                    self.advance()
                continue
            break

    def scan_number(self) -> Token:
        start = self.loc()
        start_pos = self.pos
        seen_dot = False
        while self.peek() in self.DIGITS or self.peek() == '.':
            if self.peek() == '.':
                # A second dot ends the literal and is left for the next token.
                if seen_dot:
                    break
                seen_dot = True
            self.advance()
        return Token(TokenType.NUMBER, self.content[start_pos:self.pos], start)

    def scan_string(self) -> Token:
        start = self.loc()
        self.advance()  # opening quote
        chars = []
        while not self.at_end() and self.peek() != '"':
            if self.peek() == '\\' and self.peek(1) == '"':
                self.advance()
                chars.append(self.advance())
            else:
                chars.append(self.advance())
        # Unterminated strings keep whatever was read.
        if self.peek() == '"':
            self.advance()
        return Token(TokenType.STRING, ''.join(chars), start)

    def scan_color(self) -> Token:
        start = self.loc()
        start_pos = self.pos
        self.advance()  # '#'
        while self.peek() in self.HEX_DIGITS:
            self.advance()
        return Token(TokenType.COLOR, self.content[start_pos:self.pos], start)

    def scan_word(self) -> Token:
        start = self.loc()
        start_pos = self.pos
        while self.peek() in self.WORD_CHARS:
            self.advance()
        raw = self.content[start_pos:self.pos]
        # Keywords are case-insensitive, identifiers keep their spelling
        return Token(self.KEYWORDS.get(raw.lower(), TokenType.IDENTIFIER), raw, start)

    def tokenize(self) -> List[Token]:
        tokens = []
        while True:
            self.skip_ws()
            if self.at_end():
                break
            ch = self.peek()

            if ch == '\n':
                tokens.append(Token(TokenType.NEWLINE, '\n', self.loc()))
                self.advance()
                continue

            if ch in self.DIGITS:
                tokens.append(self.scan_number())
                continue

            if ch == '"':
                tokens.append(self.scan_string())
                continue

            if ch == '#':
                tokens.append(self.scan_color())
                continue

            if ch in self.WORD_START:
                tokens.append(self.scan_word())
                continue

            loc = self.loc()
            pair = ch + self.peek(1)
            if pair in self.TWO_CHAR:
                self.advance()
                self.advance()
                tokens.append(Token(self.TWO_CHAR[pair], pair, loc))
                continue

            # Anything unrecognised (including a lone '!') is left for the parser to reject
            self.advance()
            tokens.append(Token(self.ONE_CHAR.get(ch, TokenType.ILLEGAL), ch, loc))

        tokens.append(Token(TokenType.EOF, '', self.loc()))
        return tokens


def tokenize(source: str) -> List[Token]:
    return Lexer(source).tokenize()


# =============================================================================
# 3. AST
# =============================================================================

class NodeType(Enum):
    PROGRAM = 'Program'

    LET_STATEMENT = 'LetStatement'
    FUNCTION_DECLARATION = 'FunctionDeclaration'
    RETURN_STATEMENT = 'ReturnStatement'
    IF_STATEMENT = 'IfStatement'
    REPEAT_STATEMENT = 'RepeatStatement'
    ANIMATE_BLOCK = 'AnimateBlock'
    SCENE_BLOCK = 'SceneBlock'
    EXPRESSION_STATEMENT = 'ExpressionStatement'

    IDENTIFIER = 'Identifier'
    NUMBER_LITERAL = 'NumberLiteral'
    STRING_LITERAL = 'StringLiteral'
    COLOR_LITERAL = 'ColorLiteral'
    BINARY_EXPRESSION = 'BinaryExpression'
    CALL_EXPRESSION = 'CallExpression'

    CIRCLE = 'Circle'
    RECT = 'Rect'
    LINE = 'Line'
    TRIANGLE = 'Triangle'

    MOVE = 'Move'
    ROTATE = 'Rotate'
    SCALE = 'Scale'
    FADE = 'Fade'


class Node:
    """Base for all AST nodes; subclasses carry a `location` field."""
    kind: ClassVar[NodeType]
    location: SourceLocation

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column


class Direction(Enum):
    UP = ('y', -1)
    DOWN = ('y', 1)
    LEFT = ('x', -1)
    RIGHT = ('x', 1)

    @property
    def axis(self) -> str:
        return self.value[0]

    @property
    def sign(self) -> int:
        return self.value[1]


# --- Expressions ---

@dataclass
class Identifier(Node):
    kind = NodeType.IDENTIFIER
    name: str
    location: SourceLocation


@dataclass
class NumberLiteral(Node):
    kind = NodeType.NUMBER_LITERAL
    value: float
    location: SourceLocation


@dataclass
class StringLiteral(Node):
    kind = NodeType.STRING_LITERAL
    value: str
    location: SourceLocation


@dataclass
class ColorLiteral(Node):
    kind = NodeType.COLOR_LITERAL
    value: str
    location: SourceLocation


@dataclass
class BinaryExpression(Node):
    kind = NodeType.BINARY_EXPRESSION
    operator: str
    left: Expression
    right: Expression
    location: SourceLocation


@dataclass
class CallExpression(Node):
    kind = NodeType.CALL_EXPRESSION
    callee: Expression
    arguments: List[Expression]
    location: SourceLocation


@dataclass
class Point:
    x: Expression
    y: Expression


@dataclass
class Circle(Node):
    kind = NodeType.CIRCLE
    position: Point
    size: Expression
    color: Expression
    location: SourceLocation


@dataclass
class Rect(Node):
    kind = NodeType.RECT
    position: Point
    width: Expression
    height: Expression
    color: Expression
    location: SourceLocation


@dataclass
class Line(Node):
    kind = NodeType.LINE
    start: Point
    end: Point
    color: Expression
    location: SourceLocation


@dataclass
class Triangle(Node):
    kind = NodeType.TRIANGLE
    points: List[Point]
    color: Expression
    location: SourceLocation


# --- Animation commands ---

@dataclass
class Move(Node):
    kind = NodeType.MOVE
    amount: Expression
    direction: Direction
    location: SourceLocation


@dataclass
class Rotate(Node):
    kind = NodeType.ROTATE
    angle: Expression
    location: SourceLocation


@dataclass
class Scale(Node):
    kind = NodeType.SCALE
    factor: Expression
    location: SourceLocation


@dataclass
class Fade(Node):
    kind = NodeType.FADE
    amount: Expression
    location: SourceLocation


# --- Statements ---

@dataclass
class LetStatement(Node):
    kind = NodeType.LET_STATEMENT
    name: Identifier
    value: Expression
    location: SourceLocation


@dataclass
class FunctionDeclaration(Node):
    kind = NodeType.FUNCTION_DECLARATION
    name: Identifier
    params: List[Identifier]
    body: List[Statement]
    location: SourceLocation


@dataclass
class ReturnStatement(Node):
    kind = NodeType.RETURN_STATEMENT
    value: Optional[Expression]
    location: SourceLocation


@dataclass
class IfStatement(Node):
    kind = NodeType.IF_STATEMENT
    condition: Expression
    then_branch: List[Statement]
    else_branch: Optional[List[Statement]]
    location: SourceLocation


@dataclass
class RepeatStatement(Node):
    kind = NodeType.REPEAT_STATEMENT
    times: Expression
    body: List[Statement]
    location: SourceLocation


@dataclass
class AnimateBlock(Node):
    kind = NodeType.ANIMATE_BLOCK
    commands: List[AnimationCommand]
    location: SourceLocation


@dataclass
class SceneBlock(Node):
    kind = NodeType.SCENE_BLOCK
    name: str
    body: List[Statement]
    location: SourceLocation


@dataclass
class ExpressionStatement(Node):
    kind = NodeType.EXPRESSION_STATEMENT
    expression: Expression
    location: SourceLocation


@dataclass
class Program(Node):
    kind = NodeType.PROGRAM
    body: List[Statement]
    location: SourceLocation


Shape = Union[Circle, Rect, Line, Triangle]
AnimationCommand = Union[Move, Rotate, Scale, Fade]
Expression = Union[Identifier, NumberLiteral, StringLiteral, ColorLiteral,
                   BinaryExpression, CallExpression, Shape]
Statement = Union[LetStatement, FunctionDeclaration, ReturnStatement, IfStatement,
                  RepeatStatement, AnimateBlock, SceneBlock, ExpressionStatement]


def ast_to_dict(node: Any) -> Any:
    """JSON-compatible view of a tree, used by `--ast` dumps and tests."""
    if isinstance(node, list):
        return [ast_to_dict(n) for n in node]
    if isinstance(node, Direction):
        return node.name.lower()
    if isinstance(node, Node):
        out = {'kind': node.kind.value, 'line': node.line, 'column': node.column}
        for f in fields(node):
            if f.name != 'location':
                out[f.name] = ast_to_dict(getattr(node, f.name))
        return out
    if is_dataclass(node):
        return {f.name: ast_to_dict(getattr(node, f.name)) for f in fields(node)}
    return node


# =============================================================================
# 4. PARSER
# =============================================================================

class ParseError(Exception):
    def __init__(self, text: str, location: SourceLocation, hint: Optional[str] = None):
        super().__init__(text)
        self.text = text
        self.location = location
        self.hint = hint


class Parser:
    STATEMENT_STARTS = (TokenType.LET, TokenType.FN, TokenType.RETURN, TokenType.IF,
                        TokenType.REPEAT, TokenType.ANIMATE, TokenType.SCENE)
    COMPARISON = (TokenType.EQUAL, TokenType.NOT_EQUAL, TokenType.LESS_THAN,
                  TokenType.GREATER_THAN, TokenType.LESS_EQUAL, TokenType.GREATER_EQUAL)
    ADDITIVE = (TokenType.PLUS, TokenType.MINUS)
    MULTIPLICATIVE = (TokenType.MULTIPLY, TokenType.DIVIDE, TokenType.MODULO)
    DIRECTIONS = (TokenType.UP, TokenType.DOWN, TokenType.LEFT, TokenType.RIGHT)
    SHAPE_HINTS = {
        'circle': "circle at (x, y) size r color #RRGGBB",
        'rect': "rect at (x, y) width w height h color #RRGGBB",
        'line': "line (x1, y1) (x2, y2) color #RRGGBB",
        'triangle': "triangle (x1, y1) (x2, y2) (x3, y3) color #RRGGBB",
    }
    # Nested blocks plus parenthesised expressions; keeps recursion well inside Python's limit
    MAX_DEPTH = 64

    def __init__(self, tokens: List[Token], messages: Optional[MessageCollector] = None):
        self.messages = messages if messages is not None else MessageCollector()
        self.tokens: List[Token] = []
        # Indices of tokens that follow a newline; error recovery stops there
        self.line_starts: Set[int] = set()
        after_newline = False
        for token in tokens:
            if token.type is TokenType.NEWLINE:
                after_newline = True
                continue
            if after_newline:
                self.line_starts.add(len(self.tokens))
                after_newline = False
            self.tokens.append(token)
        if not self.tokens or self.tokens[-1].type is not TokenType.EOF:
            end = self.tokens[-1].location if self.tokens else SourceLocation(1, 1)
            self.tokens.append(Token(TokenType.EOF, '', end))
        self.pos = 0
        self.depth = 0

    @property
    def errors(self) -> List[Message]:
        return self.messages.errors

    # --- token helpers ---

    def current(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.current()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return token

    def at_end(self) -> bool:
        return self.current().type is TokenType.EOF

    def check(self, *types: TokenType) -> bool:
        return self.current().type in types

    def match(self, *types: TokenType) -> Optional[Token]:
        if self.check(*types):
            return self.advance()
        return None

    def expect(self, tt: TokenType, msg: str, hint: Optional[str] = None) -> Token:
        if self.check(tt):
            return self.advance()
        raise ParseError(msg, self.current().location, hint)

    def unexpected(self, token: Token) -> ParseError:
        if token.type is TokenType.ILLEGAL:
            return ParseError(f"Unexpected character '{token.value}'", token.location)
        if token.type is TokenType.EOF:
            return ParseError("Unexpected end of input", token.location)
        return ParseError(f"Unexpected token: {token.value}", token.location)

    def check_depth(self):
        if self.depth > self.MAX_DEPTH:
            raise ParseError("Nesting too deep", self.current().location,
                             hint=f"at most {self.MAX_DEPTH} nested blocks, parentheses or operators")

    @contextmanager
    def nested(self) -> Iterator[None]:
        self.depth += 1
        try:
            self.check_depth()
            yield
        finally:
            self.depth -= 1

    def synchronize(self, start: int):
        """Skip to the next line or statement keyword, always making progress."""
        if self.pos == start:
            self.advance()
        while not self.at_end():
            if self.pos in self.line_starts or self.check(*self.STATEMENT_STARTS):
                return
            # Inside a block the closing brace belongs to the enclosing parse_block
            if self.depth > 0 and self.check(TokenType.RBRACE):
                return
            self.advance()

    # --- statements ---

    def parse(self) -> Program:
        body = self.parse_statements(top_level=True)
        return Program(body, SourceLocation(1, 1))

    def parse_statements(self, top_level: bool = False) -> List[Statement]:
        statements = []
        while not self.at_end() and (top_level or not self.check(TokenType.RBRACE)):
            start = self.pos
            try:
                statements.append(self.parse_statement())
            except ParseError as err:
                self.messages.error(err.text, err.location, hint=err.hint, kind=ErrorKind.SYNTAX)
                self.synchronize(start)
        return statements

    def parse_block(self, opening: str, closing: str) -> List[Statement]:
        self.expect(TokenType.LBRACE, opening)
        with self.nested():
            body = self.parse_statements()
        self.expect(TokenType.RBRACE, closing)
        return body

    def parse_statement(self) -> Statement:
        token = self.current()
        if self.match(TokenType.LET):
            return self.parse_let(token)
        if self.match(TokenType.FN):
            return self.parse_function(token)
        if self.match(TokenType.RETURN):
            return self.parse_return(token)
        if self.match(TokenType.IF):
            return self.parse_if(token)
        if self.match(TokenType.REPEAT):
            return self.parse_repeat(token)
        if self.match(TokenType.ANIMATE):
            return self.parse_animate(token)
        if self.match(TokenType.SCENE):
            return self.parse_scene(token)
        expr = self.parse_expression()
        return ExpressionStatement(expr, expr.location)

    def parse_let(self, start: Token) -> LetStatement:
        name = self.expect(TokenType.IDENTIFIER, "Expected variable name", hint="let name = value")
        self.expect(TokenType.ASSIGN, "Expected = after variable name")
        value = self.parse_expression()
        return LetStatement(Identifier(name.value, name.location), value, start.location)

    def parse_function(self, start: Token) -> FunctionDeclaration:
        name = self.expect(TokenType.IDENTIFIER, "Expected function name")
        self.expect(TokenType.LPAREN, "Expected ( after function name", hint=f"fn {name.value}(a, b) {{ ... }}")
        params = []
        if not self.check(TokenType.RPAREN):
            while True:
                param = self.expect(TokenType.IDENTIFIER, "Expected parameter name")
                params.append(Identifier(param.value, param.location))
                if not self.match(TokenType.COMMA):
                    break
        self.expect(TokenType.RPAREN, "Expected ) after parameters")
        body = self.parse_block("Expected { before function body", "Expected } after function body")
        return FunctionDeclaration(Identifier(name.value, name.location), params, body, start.location)

    def parse_return(self, start: Token) -> ReturnStatement:
        value = None
        if not (self.check(TokenType.RBRACE, TokenType.EOF) or self.pos in self.line_starts):
            value = self.parse_expression()
        return ReturnStatement(value, start.location)

    def parse_if(self, start: Token) -> IfStatement:
        condition = self.parse_expression()
        then_branch = self.parse_block("Expected { after if condition", "Expected } after if body")
        else_branch = None
        if self.match(TokenType.ELSE):
            if chained := self.match(TokenType.IF):
                with self.nested():
                    else_branch = [self.parse_if(chained)]
            else:
                else_branch = self.parse_block("Expected { after else", "Expected } after else body")
        return IfStatement(condition, then_branch, else_branch, start.location)

    def parse_repeat(self, start: Token) -> RepeatStatement:
        times = self.parse_expression()
        body = self.parse_block("Expected { after repeat count", "Expected } after repeat body")
        return RepeatStatement(times, body, start.location)

    def parse_animate(self, start: Token) -> AnimateBlock:
        self.expect(TokenType.LBRACE, "Expected { after animate", hint="animate { move 2 right }")
        commands = []
        while not self.check(TokenType.RBRACE, TokenType.EOF):
            token = self.current()
            if self.match(TokenType.MOVE):
                amount = self.parse_primary()
                direction = Direction.RIGHT
                if d := self.match(*self.DIRECTIONS):
                    direction = Direction[d.type.name]
                commands.append(Move(amount, direction, token.location))
            elif self.match(TokenType.ROTATE):
                commands.append(Rotate(self.parse_primary(), token.location))
            elif self.match(TokenType.SCALE):
                commands.append(Scale(self.parse_primary(), token.location))
            elif self.match(TokenType.FADE):
                commands.append(Fade(self.parse_primary(), token.location))
            else:
                # Only animation commands belong here; anything else is ignored
                self.advance()
        self.expect(TokenType.RBRACE, "Expected } after animate block")
        return AnimateBlock(commands, start.location)

    def parse_scene(self, start: Token) -> SceneBlock:
        name = self.expect(TokenType.IDENTIFIER, "Expected scene name", hint="scene intro { ... }")
        body = self.parse_block("Expected { after scene name", "Expected } after scene body")
        return SceneBlock(name.value, body, start.location)

    # --- expressions ---

    def parse_expression(self) -> Expression:
        with self.nested():
            return self.parse_comparison()

    def parse_comparison(self) -> Expression:
        # Non-chaining: `a < b < c` leaves the second operator unconsumed
        expr = self.parse_additive()
        if op := self.match(*self.COMPARISON):
            with self.nested():
                expr = BinaryExpression(op.value, expr, self.parse_additive(), op.location)
        return expr

    def parse_chain(self, operand, operators) -> Expression:
        """Left-associative operator loop. Each application deepens the tree, so it counts as nesting."""
        expr = operand()
        applied = 0
        try:
            while op := self.match(*operators):
                applied += 1
                self.depth += 1
                self.check_depth()
                expr = BinaryExpression(op.value, expr, operand(), op.location)
        finally:
            self.depth -= applied
        return expr

    def parse_additive(self) -> Expression:
        return self.parse_chain(self.parse_term, self.ADDITIVE)

    def parse_term(self) -> Expression:
        return self.parse_chain(self.parse_call, self.MULTIPLICATIVE)

    def parse_call(self) -> Expression:
        expr = self.parse_shape()
        if self.match(TokenType.LPAREN):
            args = []
            if not self.check(TokenType.RPAREN):
                args.append(self.parse_expression())
                while self.match(TokenType.COMMA):
                    args.append(self.parse_expression())
            self.expect(TokenType.RPAREN, "Expected ) after arguments")
            expr = CallExpression(expr, args, expr.location)
        return expr

    def parse_shape(self) -> Expression:
        token = self.current()
        if self.match(TokenType.CIRCLE):
            return self.parse_circle(token)
        if self.match(TokenType.RECT):
            return self.parse_rect(token)
        if self.match(TokenType.LINE):
            return self.parse_line(token)
        if self.match(TokenType.TRIANGLE):
            return self.parse_triangle(token)
        return self.parse_primary()

    def parse_point(self, what: str, hint: str) -> Point:
        self.expect(TokenType.LPAREN, f"Expected ( for {what}", hint)
        x = self.parse_expression()
        self.expect(TokenType.COMMA, f"Expected , in {what}", hint)
        y = self.parse_expression()
        self.expect(TokenType.RPAREN, f"Expected ) after {what}", hint)
        return Point(x, y)

    def parse_clause(self, tt: TokenType, keyword: str, hint: str) -> Expression:
        self.expect(tt, f'Expected "{keyword}" keyword', hint)
        return self.parse_expression()

    def parse_circle(self, start: Token) -> Circle:
        hint = self.SHAPE_HINTS['circle']
        self.expect(TokenType.AT, 'Expected "at" after circle', hint)
        position = self.parse_point("position", hint)
        size = self.parse_clause(TokenType.SIZE, "size", hint)
        color = self.parse_clause(TokenType.COLOR_PROP, "color", hint)
        return Circle(position, size, color, start.location)

    def parse_rect(self, start: Token) -> Rect:
        hint = self.SHAPE_HINTS['rect']
        self.expect(TokenType.AT, 'Expected "at" after rect', hint)
        position = self.parse_point("position", hint)
        width = self.parse_clause(TokenType.WIDTH, "width", hint)
        height = self.parse_clause(TokenType.HEIGHT, "height", hint)
        color = self.parse_clause(TokenType.COLOR_PROP, "color", hint)
        return Rect(position, width, height, color, start.location)

    def parse_line(self, start: Token) -> Line:
        hint = self.SHAPE_HINTS['line']
        begin = self.parse_point("start position", hint)
        end = self.parse_point("end position", hint)
        color = self.parse_clause(TokenType.COLOR_PROP, "color", hint)
        return Line(begin, end, color, start.location)

    def parse_triangle(self, start: Token) -> Triangle:
        hint = self.SHAPE_HINTS['triangle']
        points = [self.parse_point("point", hint) for _ in range(3)]
        color = self.parse_clause(TokenType.COLOR_PROP, "color", hint)
        return Triangle(points, color, start.location)

    def parse_primary(self) -> Expression:
        token = self.current()
        if self.match(TokenType.NUMBER):
            return NumberLiteral(float(token.value), token.location)
        if self.match(TokenType.STRING):
            return StringLiteral(token.value, token.location)
        if self.match(TokenType.COLOR):
            return ColorLiteral(token.value, token.location)
        if self.match(TokenType.IDENTIFIER):
            return Identifier(token.value, token.location)
        if self.match(TokenType.LPAREN):
            expr = self.parse_expression()
            self.expect(TokenType.RPAREN, "Expected ) after expression")
            return expr
        raise self.unexpected(token)


def parse(tokens: List[Token]) -> Tuple[Program, List[Message]]:
    parser = Parser(tokens)
    program = parser.parse()
    return program, parser.errors


# =============================================================================
# 5. SEMANTIC ANALYSIS
# =============================================================================

class SymbolKind(Enum):
    VARIABLE = 'variable'
    FUNCTION = 'function'
    PARAMETER = 'parameter'


@dataclass(frozen=True)
class Symbol:
    name: str
    kind: SymbolKind
    location: SourceLocation


class SymbolTable:
    """Stack of scope frames, innermost last."""

    def __init__(self):
        self.scopes: List[Dict[str, Symbol]] = []

    @property
    def depth(self) -> int:
        return len(self.scopes)

    def enter(self):
        self.scopes.append({})

    def exit(self):
        self.scopes.pop()

    def declare(self, symbol: Symbol) -> Optional[Symbol]:
        """Add to the innermost frame. Returns the existing symbol on a clash."""
        frame = self.scopes[-1]
        if symbol.name in frame:
            return frame[symbol.name]
        frame[symbol.name] = symbol
        return None

    def lookup(self, name: str) -> Optional[Symbol]:
        for frame in reversed(self.scopes):
            if name in frame:
                return frame[name]
        return None


class SemanticAnalyzer:
    def __init__(self, messages: Optional[MessageCollector] = None):
        self.messages = messages if messages is not None else MessageCollector()
        self.symbols = SymbolTable()
        self._statements = {
            LetStatement: self._analyze_let,
            FunctionDeclaration: self._analyze_function,
            ReturnStatement: self._analyze_return,
            IfStatement: self._analyze_if,
            RepeatStatement: self._analyze_repeat,
            AnimateBlock: self._analyze_animate,
            SceneBlock: self._analyze_scene,
            ExpressionStatement: lambda stmt: self._analyze_expression(stmt.expression),
        }

    def analyze(self, program: Program) -> List[Message]:
        first = len(self.messages.errors)
        self.symbols = SymbolTable()
        self.symbols.enter()
        self._analyze_block(program.body)
        self.symbols.exit()
        return self.messages.errors[first:]

    def _declare(self, ident: Identifier, kind: SymbolKind):
        previous = self.symbols.declare(Symbol(ident.name, kind, ident.location))
        if previous:
            self.messages.error(
                f"{kind.value.capitalize()} '{ident.name}' is already declared in this scope",
                ident.location,
                hint=f"previous declaration at {previous.location}",
            )

    def _resolve(self, ident: Identifier) -> Optional[Symbol]:
        symbol = self.symbols.lookup(ident.name)
        if symbol is None:
            self.messages.error(f"Undefined variable '{ident.name}'", ident.location)
        return symbol

    def _analyze_block(self, statements: List[Statement]):
        # Functions are visible to the whole statement list they appear in
        for stmt in statements:
            if isinstance(stmt, FunctionDeclaration):
                self._declare(stmt.name, SymbolKind.FUNCTION)
        for stmt in statements:
            self._analyze_statement(stmt)

    def _analyze_statement(self, stmt: Statement):
        handler = self._statements.get(type(stmt))
        if handler is None:
            raise InternalCompilerError(f"Unhandled statement kind {type(stmt).__name__}",
                                        getattr(stmt, 'location', None))
        handler(stmt)

    def _analyze_let(self, stmt: LetStatement):
        # The initializer cannot see the name it is bound to
        self._analyze_expression(stmt.value)
        self._declare(stmt.name, SymbolKind.VARIABLE)

    def _analyze_function(self, stmt: FunctionDeclaration):
        self.symbols.enter()
        for param in stmt.params:
            self._declare(param, SymbolKind.PARAMETER)
        self._analyze_block(stmt.body)
        self.symbols.exit()

    def _analyze_return(self, stmt: ReturnStatement):
        if stmt.value is not None:
            self._analyze_expression(stmt.value)

    def _analyze_if(self, stmt: IfStatement):
        self._analyze_expression(stmt.condition)
        self._analyze_block(stmt.then_branch)
        if stmt.else_branch is not None:
            self._analyze_block(stmt.else_branch)

    def _analyze_repeat(self, stmt: RepeatStatement):
        self._analyze_expression(stmt.times)
        self._analyze_block(stmt.body)

    def _analyze_animate(self, stmt: AnimateBlock):
        # Command magnitudes are left unchecked
        pass

    def _analyze_scene(self, stmt: SceneBlock):
        self.symbols.enter()
        self._analyze_block(stmt.body)
        self.symbols.exit()

    def _analyze_expression(self, expr: Expression):
        if isinstance(expr, Identifier):
            self._resolve(expr)
        elif isinstance(expr, (NumberLiteral, StringLiteral, ColorLiteral)):
            pass
        elif isinstance(expr, BinaryExpression):
            self._analyze_expression(expr.left)
            self._analyze_expression(expr.right)
        elif isinstance(expr, CallExpression):
            self._analyze_expression(expr.callee)
            for arg in expr.arguments:
                self._analyze_expression(arg)
        elif isinstance(expr, Circle):
            self._analyze_points([expr.position])
            self._analyze_expression(expr.size)
            self._analyze_expression(expr.color)
        elif isinstance(expr, Rect):
            self._analyze_points([expr.position])
            self._analyze_expression(expr.width)
            self._analyze_expression(expr.height)
            self._analyze_expression(expr.color)
        elif isinstance(expr, Line):
            self._analyze_points([expr.start, expr.end])
            self._analyze_expression(expr.color)
        elif isinstance(expr, Triangle):
            self._analyze_points(expr.points)
            self._analyze_expression(expr.color)
        else:
            raise InternalCompilerError(f"Unhandled expression kind {type(expr).__name__}",
                                        getattr(expr, 'location', None))

    def _analyze_points(self, points: List[Point]):
        for point in points:
            self._analyze_expression(point.x)
            self._analyze_expression(point.y)


def analyze(program: Program) -> List[Message]:
    return SemanticAnalyzer().analyze(program)


# =============================================================================
# 6. CODE GENERATION
# =============================================================================

def format_number(value: float) -> str:
    """JavaScript number text: integral values without a fraction."""
    if math.isinf(value):
        return "Infinity"
    if value.is_integer():
        return str(int(value))
    return repr(value)


class CodeGenerator:
    CANVAS_ID = "mflow-canvas"
    PREVIEW_SIZE = (500, 500)
    INDENT = "  "
    PREAMBLE = '\n'.join([
        '// MFlow compiled output',
        f'const canvas = document.getElementById("{CANVAS_ID}");',
        'const ctx = canvas.getContext("2d");',
        '',
        '// Animation state',
        'let animationState = {',
        '  x: 0,',
        '  y: 0,',
        '  rotation: 0,',
        '  scale: 1,',
        '  opacity: 1',
        '};',
        '',
        '// Helper functions',
        'function resetTransform() {',
        '  ctx.setTransform(1, 0, 0, 1, 0, 0);',
        '}',
        '',
        'function applyTransform(x, y) {',
        '  ctx.translate(x + animationState.x, y + animationState.y);',
        '  ctx.rotate(animationState.rotation * Math.PI / 180);',
        '  ctx.scale(animationState.scale, animationState.scale);',
        '  ctx.globalAlpha = animationState.opacity;',
        '}',
        '',
        '// Clear canvas',
        'function clear() {',
        '  resetTransform();',
        '  ctx.clearRect(0, 0, canvas.width, canvas.height);',
        '}',
        '',
    ]) + '\n'
    # Names a user binding would shadow or that JavaScript refuses as identifiers
    RESERVED_NAMES = frozenset((
        'canvas ctx animationState resetTransform applyTransform clear main '
        'document window Math requestAnimationFrame undefined NaN Infinity arguments eval '
        'break case catch class const continue debugger default delete do else enum export '
        'extends false finally for function if import in instanceof let new null return '
        'static super switch this throw true try typeof var void while with yield await '
        'implements interface package private protected public'
    ).split())
    GENERATED_PREFIXES = ('__', 'animate_', 'scene_')

    def __init__(self):
        self.lines: List[str] = []
        self.indent = 0
        self.loop_depth = 0
        self.routine_names: Set[str] = set()
        self._statements = {
            LetStatement: self._gen_let,
            FunctionDeclaration: self._gen_function,
            ReturnStatement: self._gen_return,
            IfStatement: self._gen_if,
            RepeatStatement: self._gen_repeat,
            AnimateBlock: self._gen_animate,
            SceneBlock: self._gen_scene,
            ExpressionStatement: lambda stmt: self.emit(f"{self._expression(stmt.expression)};"),
        }
        self._expressions = {
            Identifier: lambda expr: self.js_name(expr.name),
            NumberLiteral: lambda expr: format_number(expr.value),
            StringLiteral: lambda expr: json.dumps(expr.value),
            ColorLiteral: lambda expr: json.dumps(expr.value),
            BinaryExpression: lambda expr: (f"({self._expression(expr.left)} {expr.operator} "
                                            f"{self._expression(expr.right)})"),
            CallExpression: lambda expr: (f"{self._expression(expr.callee)}("
                                          f"{', '.join(self._expression(a) for a in expr.arguments)})"),
            Circle: self._gen_circle,
            Rect: self._gen_rect,
            Line: self._gen_line,
            Triangle: self._gen_triangle,
        }

    def generate(self, program: Program) -> str:
        self.lines = []
        self.indent = 0
        self.loop_depth = 0
        self.routine_names = set()

        # A program without statements is just the runtime preamble
        if program.body:
            self.emit('// Main program')
            self.emit('(function main() {')
            with self.block():
                for stmt in program.body:
                    self._statement(stmt)
            self.emit('})();')
        body = '\n'.join(self.lines)
        return self.PREAMBLE + (body + '\n' if body else '')

    def html_page(self, script: str, title: str = "MFlow preview") -> str:
        width, height = self.PREVIEW_SIZE
        return '\n'.join([
            '<!DOCTYPE html>',
            '<html>',
            '<head>',
            '<meta charset="utf-8">',
            f'<title>{title}</title>',
            '<style>body{margin:0;background:#111;display:flex;justify-content:center;'
            'align-items:center;height:100vh}canvas{background:#000}</style>',
            '</head>',
            '<body>',
            f'<canvas id="{self.CANVAS_ID}" width="{width}" height="{height}"></canvas>',
            '<script>',
            script.rstrip('\n'),
            '</script>',
            '</body>',
            '</html>',
            '',
        ])

    # --- emission helpers ---

    def js_name(self, name: str) -> str:
        """User identifier as emitted. `$` never appears in MFlow names, so the suffix cannot collide."""
        if name in self.RESERVED_NAMES or name.startswith(self.GENERATED_PREFIXES):
            return name + '$'
        return name

    def emit(self, code: str):
        self.lines.append(self.INDENT * self.indent + code)

    @contextmanager
    def block(self) -> Iterator[None]:
        self.indent += 1
        try:
            yield
        finally:
            self.indent -= 1

    def _body(self, statements: List[Statement]):
        with self.block():
            for stmt in statements:
                self._statement(stmt)

    def _unique(self, base: str) -> str:
        name, n = base, 1
        while name in self.routine_names:
            n += 1
            name = f"{base}_{n}"
        self.routine_names.add(name)
        return name

    def _iife(self, body: List[str]) -> str:
        """Self-invoking function at the current indent, body one level deeper."""
        inner = self.INDENT * (self.indent + 1)
        outer = self.INDENT * self.indent
        return "(function() {\n" + ''.join(f"{inner}{line}\n" for line in body) + f"{outer}}})()"

    # --- statements ---

    def _statement(self, stmt: Statement):
        handler = self._statements.get(type(stmt))
        if handler is None:
            raise InternalCompilerError(f"No code generation rule for {type(stmt).__name__}",
                                        getattr(stmt, 'location', None))
        handler(stmt)

    def _gen_let(self, stmt: LetStatement):
        # `var`: bindings made inside if/repeat bodies stay visible to the enclosing function
        self.emit(f"var {self.js_name(stmt.name.name)} = {self._expression(stmt.value)};")

    def _gen_function(self, stmt: FunctionDeclaration):
        params = ', '.join(self.js_name(p.name) for p in stmt.params)
        self.emit(f"function {self.js_name(stmt.name.name)}({params}) {{")
        self._body(stmt.body)
        self.emit("}")

    def _gen_return(self, stmt: ReturnStatement):
        if stmt.value is None:
            self.emit("return;")
        else:
            self.emit(f"return {self._expression(stmt.value)};")

    def _gen_if(self, stmt: IfStatement):
        cond = self._expression(stmt.condition)
        if not isinstance(stmt.condition, BinaryExpression):
            cond = f"({cond})"
        self.emit(f"if {cond} {{")
        self._body(stmt.then_branch)
        if stmt.else_branch is not None:
            self.emit("} else {")
            self._body(stmt.else_branch)
        self.emit("}")

    def _gen_repeat(self, stmt: RepeatStatement):
        d = self.loop_depth
        times = self._expression(stmt.times)
        # The bound is evaluated once, on loop entry
        self.emit(f"for (let __i{d} = 0, __n{d} = {times}; __i{d} < __n{d}; __i{d}++) {{")
        self.loop_depth += 1
        self._body(stmt.body)
        self.loop_depth -= 1
        self.emit("}")

    def _gen_animate(self, stmt: AnimateBlock):
        name = self._unique("animate")
        self.emit("// Animation loop")
        self.emit(f"function {name}() {{")
        with self.block():
            self.emit("clear();")
            for cmd in stmt.commands:
                self.emit(self._animation(cmd))
            self.emit(f"requestAnimationFrame({name});")
        self.emit("}")
        self.emit(f"{name}();")

    def _animation(self, cmd: AnimationCommand) -> str:
        if isinstance(cmd, Move):
            op = '-=' if cmd.direction.sign < 0 else '+='
            return f"animationState.{cmd.direction.axis} {op} {self._expression(cmd.amount)};"
        if isinstance(cmd, Rotate):
            return f"animationState.rotation += {self._expression(cmd.angle)};"
        if isinstance(cmd, Scale):
            return f"animationState.scale *= {self._expression(cmd.factor)};"
        if isinstance(cmd, Fade):
            return f"animationState.opacity -= {self._expression(cmd.amount)};"
        raise InternalCompilerError(f"No code generation rule for {type(cmd).__name__}",
                                    getattr(cmd, 'location', None))

    def _gen_scene(self, stmt: SceneBlock):
        name = self._unique(f"scene_{stmt.name}")
        self.emit(f"// Scene: {stmt.name}")
        self.emit(f"function {name}() {{")
        self._body(stmt.body)
        self.emit("}")
        self.emit(f"{name}();")

    # --- expressions ---

    def _expression(self, expr: Expression) -> str:
        handler = self._expressions.get(type(expr))
        if handler is None:
            raise InternalCompilerError(f"No code generation rule for {type(expr).__name__}",
                                        getattr(expr, 'location', None))
        return handler(expr)

    def _point(self, point: Point) -> Tuple[str, str]:
        return self._expression(point.x), self._expression(point.y)

    # Shape temporaries are prefixed so `circle at (x, y)` can still read user variables x and y

    def _gen_circle(self, expr: Circle) -> str:
        with self.block():
            x, y = self._point(expr.position)
            size = self._expression(expr.size)
            color = self._expression(expr.color)
        return self._iife([
            "ctx.save();",
            f"const __x = {x};",
            f"const __y = {y};",
            f"const __size = {size};",
            f"const __color = {color};",
            "applyTransform(__x, __y);",
            "ctx.beginPath();",
            "ctx.arc(0, 0, __size, 0, Math.PI * 2);",
            "ctx.fillStyle = __color;",
            "ctx.fill();",
            "ctx.restore();",
        ])

    def _gen_rect(self, expr: Rect) -> str:
        with self.block():
            x, y = self._point(expr.position)
            width = self._expression(expr.width)
            height = self._expression(expr.height)
            color = self._expression(expr.color)
        # Rectangles are anchored at their centre, not the top-left corner
        return self._iife([
            "ctx.save();",
            f"const __x = {x};",
            f"const __y = {y};",
            f"const __w = {width};",
            f"const __h = {height};",
            f"const __color = {color};",
            "applyTransform(__x, __y);",
            "ctx.fillStyle = __color;",
            "ctx.fillRect(-__w / 2, -__h / 2, __w, __h);",
            "ctx.restore();",
        ])

    def _bind_points(self, points: List[Point]) -> Tuple[List[str], List[Tuple[str, str]]]:
        """`const __xN`/`__yN` declarations for a vertex list, in source order."""
        bindings, names = [], []
        for i, point in enumerate(points, 1):
            x, y = self._point(point)
            bindings += [f"const __x{i} = {x};", f"const __y{i} = {y};"]
            names.append((f"__x{i}", f"__y{i}"))
        return bindings, names

    def _gen_line(self, expr: Line) -> str:
        with self.block():
            bindings, ((x1, y1), (x2, y2)) = self._bind_points([expr.start, expr.end])
            color = self._expression(expr.color)
        return self._iife([
            "ctx.save();",
            *bindings,
            f"const __color = {color};",
            "applyTransform(0, 0);",
            "ctx.strokeStyle = __color;",
            "ctx.beginPath();",
            f"ctx.moveTo({x1}, {y1});",
            f"ctx.lineTo({x2}, {y2});",
            "ctx.stroke();",
            "ctx.restore();",
        ])

    def _gen_triangle(self, expr: Triangle) -> str:
        with self.block():
            bindings, names = self._bind_points(expr.points)
            color = self._expression(expr.color)
        path = [f"ctx.{'moveTo' if i == 0 else 'lineTo'}({x}, {y});" for i, (x, y) in enumerate(names)]
        return self._iife([
            "ctx.save();",
            *bindings,
            f"const __color = {color};",
            "applyTransform(0, 0);",
            "ctx.fillStyle = __color;",
            "ctx.beginPath();",
            *path,
            "ctx.closePath();",
            "ctx.fill();",
            "ctx.restore();",
        ])


def generate(program: Program) -> str:
    return CodeGenerator().generate(program)


# =============================================================================
# 7. COMPILER DRIVER
# =============================================================================

class CompileState(Enum):
    LEXED = auto()
    PARSED = auto()
    ANALYZED = auto()
    GENERATED = auto()
    SYNTAX_FAILED = auto()
    SEMANTIC_FAILED = auto()


@dataclass
class CompilationResult:
    state: CompileState
    output: Optional[str] = None
    errors: List[Message] = field(default_factory=list)
    program: Optional[Program] = None

    @property
    def success(self) -> bool:
        return self.state is CompileState.GENERATED

    @property
    def error_messages(self) -> List[str]:
        return [str(e) for e in self.errors]


class MFlowCompiler:
    def __init__(self, name: str = "<input>"):
        self.name = name
        self.ast = None
        self.messages = None
        self.state = None

    def compile(self, code: str, verbose: bool = False) -> CompilationResult:
        if verbose:
            print("=" * 60)
            print("MFLOW COMPILER")
            print("=" * 60)

        source = SourceFile(self.name, code)
        self.messages = MessageCollector(source)
        self.ast = None

        # Lex
        if verbose:
            print("\n[PHASE 1: LEXICAL ANALYSIS]")
        tokens = Lexer(source).tokenize()
        self.state = CompileState.LEXED
        if verbose:
            count = len([t for t in tokens if t.type not in (TokenType.EOF, TokenType.NEWLINE)])
            print(f"  ✓ {count} tokens")

        # Parse
        if verbose:
            print("\n[PHASE 2: PARSING]")
        self.ast = Parser(tokens, self.messages).parse()
        if self.messages.has_errors():
            return self._fail(CompileState.SYNTAX_FAILED, verbose)
        self.state = CompileState.PARSED
        if verbose:
            print(f"  ✓ {len(self.ast.body)} top-level statements")

        # Analyze
        if verbose:
            print("\n[PHASE 3: SEMANTIC ANALYSIS]")
        SemanticAnalyzer(self.messages).analyze(self.ast)
        if self.messages.has_errors():
            return self._fail(CompileState.SEMANTIC_FAILED, verbose)
        self.state = CompileState.ANALYZED
        if verbose:
            print("  ✓ Validation PASSED")

        # Generate
        if verbose:
            print("\n[PHASE 4: CODE GENERATION]")
        output = CodeGenerator().generate(self.ast)
        self.state = CompileState.GENERATED
        if verbose:
            print(f"  ✓ JavaScript generated ({len(output.splitlines())} lines)")

        return CompilationResult(self.state, output, [], self.ast)

    def _fail(self, state: CompileState, verbose: bool) -> CompilationResult:
        self.state = state
        if verbose:
            print(f"  ✗ {'Syntax' if state is CompileState.SYNTAX_FAILED else 'Validation'} FAILED")
            for e in self.messages.errors:
                print("    [ERROR] " + self.messages.format(e).replace('\n', '\n    '))
        return CompilationResult(state, None, list(self.messages.errors))


def compile_source(code: str, name: str = "<input>") -> CompilationResult:
    return MFlowCompiler(name).compile(code)


# =============================================================================
# 8. TESTS & MAIN
# =============================================================================

SAMPLE_CODE = """\
// Complex scene
scene main {
  circle at (150, 150) size 40 color #00FFFF
  rect at (350, 150) width 60 height 60 color #FF00FF
  triangle (250, 300) (200, 400) (300, 400) color #FFFF00

  animate {
    move 1 right
    rotate 0.5
  }
}
"""

SYNTAX = CompileState.SYNTAX_FAILED
SEMANTIC = CompileState.SEMANTIC_FAILED

# (name, code, should_pass, expectations)
TEST_CASES = [
    # =================================================================
    # CATEGORY 1: Basic Valid Inputs
    # =================================================================
    ("Basic: Empty program", "", True, {'excludes': ['function main']}),
    ("Basic: Only comments", "// nothing to draw", True, {'excludes': ['function main']}),
    ("Basic: Single circle", "circle at (200, 200) size 50 color #00FFFF", True,
     {'contains': ['ctx.arc(0, 0, __size, 0, Math.PI * 2);', 'const __color = "#00FFFF";']}),
    ("Basic: Rect centered", "rect at (400, 200) width 80 height 80 color #FF00FF", True,
     {'contains': ['ctx.fillRect(-__w / 2, -__h / 2, __w, __h);']}),
    ("Basic: Line", "line (0, 0) (100, 100) color #FFFFFF", True,
     {'contains': ['const __x2 = 100;', 'ctx.moveTo(__x1, __y1);', 'ctx.lineTo(__x2, __y2);', 'ctx.stroke();']}),
    ("Basic: Triangle", "triangle (250, 300) (200, 400) (300, 400) color #FFFF00", True,
     {'contains': ['const __x1 = 250;', 'const __y3 = 400;', 'ctx.moveTo(__x1, __y1);',
                   'ctx.lineTo(__x2, __y2);', 'ctx.lineTo(__x3, __y3);', 'ctx.closePath();']}),
    ("Basic: Sample program", SAMPLE_CODE, True, {'contains': ['function scene_main() {']}),

    # =================================================================
    # CATEGORY 2: Variables & Scoping
    # =================================================================
    ("Vars: Let binding", "let x = 100", True, {'contains': ['var x = 100;']}),
    ("Vars: Use after let", "let r = 10\ncircle at (r, r) size r color #000", True,
     {'contains': ['const __size = r;']}),
    ("Vars: Undefined", "let x = y", False,
     {'state': SEMANTIC, 'error_count': 1, 'error_contains': "Undefined variable 'y'"}),
    ("Vars: Self reference", "let x = x", False,
     {'state': SEMANTIC, 'error_count': 1, 'error_contains': "Undefined variable 'x'"}),
    ("Vars: Duplicate global", "let a = 1\nlet a = 2", False,
     {'state': SEMANTIC, 'error_contains': "Variable 'a' is already declared"}),
    ("Vars: Case preserved", "let Size2 = 3\nlet other = Size2", True, {'contains': ['var other = Size2;']}),
    ("Vars: Keywords ignore case", "let SIZE = 3", False,
     {'state': SYNTAX, 'error_contains': 'Expected variable name'}),
    ("Vars: Errors are exhaustive", "let a = b\nlet c = d + e", False, {'error_count': 3}),

    # =================================================================
    # CATEGORY 3: Expressions
    # =================================================================
    ("Expr: Precedence", "let a = 1 + 2 * 3", True, {'contains': ['var a = (1 + (2 * 3));']}),
    ("Expr: Left associative", "let a = 10 - 4 - 3", True, {'contains': ['var a = ((10 - 4) - 3);']}),
    ("Expr: Parentheses", "let a = (1 + 2) * 3", True, {'contains': ['var a = ((1 + 2) * 3);']}),
    ("Expr: Comparison lowest", "let a = 1 + 1 == 2", True, {'contains': ['var a = ((1 + 1) == 2);']}),
    ("Expr: Comparison does not chain", "let a = 1 < 2 < 3", False, {'state': SYNTAX}),
    ("Expr: Modulo", "let a = 7 % 3", True, {'contains': ['var a = (7 % 3);']}),
    ("Expr: Decimal", "let a = 0.5", True, {'contains': ['var a = 0.5;']}),
    ("Expr: Trailing dot", "let a = 1.", True, {'contains': ['var a = 1;']}),
    ("Expr: Second dot ends number", "let a = 1.2.3", False, {'state': SYNTAX}),
    ("Expr: Escaped quote", 'let s = "hi \\"there\\""', True, {'contains': ['var s = "hi \\"there\\"";']}),
    ("Expr: Unterminated string", 'let s = "open', True, {'contains': ['var s = "open";']}),
    ("Expr: Bare hash color", "let c = #", True, {'contains': ['var c = "#";']}),

    # =================================================================
    # CATEGORY 4: Functions
    # =================================================================
    ("Fn: Declare and call", "fn grow(r) {\n  return r * 2\n}\nlet big = grow(10)", True,
     {'contains': ['function grow(r) {', 'return (r * 2);', 'var big = grow(10);']}),
    ("Fn: Forward call", "let v = twice(2)\nfn twice(n) {\n  return n + n\n}", True, None),
    ("Fn: Duplicate local", "fn f(){ let a = 1 let a = 2 }", False,
     {'state': SEMANTIC, 'error_count': 1, 'error_contains': "Variable 'a' is already declared"}),
    ("Fn: Parameters are local", "fn f(p) {\n  return p\n}\nlet q = p", False,
     {'error_contains': "Undefined variable 'p'"}),
    ("Fn: Shadowing allowed", "let a = 1\nfn f() {\n  let a = 2\n  return a\n}", True, None),
    ("Fn: Duplicate parameter", "fn f(a, a) {\n}", False, {'error_contains': "Parameter 'a'"}),
    ("Fn: Duplicate function", "fn f() {\n}\nfn f() {\n}", False, {'error_contains': "Function 'f'"}),
    ("Fn: Bare return", "fn f() {\n  return\n}", True, {'contains': ['return;']}),
    ("Fn: Shape argument", "fn draw(s) {\n  return s\n}\ndraw(circle at (1, 1) size 2 color #000)", True,
     {'contains': ['draw((function() {']}),
    ("Fn: Missing parenthesis", "fn f {\n}", False,
     {'state': SYNTAX, 'error_contains': 'Expected ( after function name'}),

    # =================================================================
    # CATEGORY 5: Control Flow
    # =================================================================
    ("If: Body shares scope", "fn f() {\n  if 1 == 1 {\n    let a = 1\n  }\n  return a\n}", True, None),
    ("If: Else branch",
     "let c = 1\nif c > 0 {\n  circle at (0, 0) size 1 color #fff\n} else {\n  let d = c\n}", True,
     {'contains': ['if (c > 0) {', '} else {']}),
    ("If: Else if", "let c = 1\nif c == 0 {\n} else if c == 1 {\n}", True, {'contains': ['if (c == 1) {']}),
    ("If: Identifier condition", "let c = 1\nif c {\n}", True, {'contains': ['if (c) {']}),
    ("Repeat: Counted loop", "repeat 3 { circle at (0,0) size 1 color #000000 }", True,
     {'contains': ['for (let __i0 = 0, __n0 = 3; __i0 < __n0; __i0++) {']}),
    ("Repeat: Nested loops", "repeat 2 {\n  repeat 3 {\n  }\n}", True, {'contains': ['__n0 = 2', '__n1 = 3']}),
    ("Repeat: Body shares scope", "let x = 100\nrepeat 5 {\n  let x = x + 80\n}", False,
     {'state': SEMANTIC, 'error_contains': 'already declared'}),

    # =================================================================
    # CATEGORY 6: Animation
    # =================================================================
    ("Animate: Move left", "animate { move 5 left }", True, {'contains': ['animationState.x -= 5;']}),
    ("Animate: Move down", "animate { move 5 down }", True, {'contains': ['animationState.y += 5;']}),
    ("Animate: Move up", "animate { move 5 up }", True, {'contains': ['animationState.y -= 5;']}),
    ("Animate: Default direction", "animate { move 2 }", True, {'contains': ['animationState.x += 2;']}),
    ("Animate: All commands", "animate {\n  rotate 1\n  scale 1.01\n  fade 0.01\n}", True,
     {'contains': ['animationState.rotation += 1;', 'animationState.scale *= 1.01;',
                   'animationState.opacity -= 0.01;', 'requestAnimationFrame(animate);', 'animate();']}),
    ("Animate: Magnitudes unchecked", "animate { move speedy right }", True,
     {'contains': ['animationState.x += speedy;']}),
    ("Animate: Other tokens skipped", "animate { circle 42 move 1 up }", True,
     {'contains': ['animationState.y -= 1;']}),
    ("Animate: Two blocks", "animate { rotate 1 }\nanimate { rotate 2 }", True,
     {'contains': ['function animate_2() {', 'requestAnimationFrame(animate_2);']}),
    ("Animate: Missing brace", "animate move 1", False,
     {'state': SYNTAX, 'error_contains': 'Expected { after animate'}),

    # =================================================================
    # CATEGORY 7: Scenes
    # =================================================================
    ("Scene: Wrapped and invoked", "scene intro {\n  let a = 1\n}", True,
     {'contains': ['// Scene: intro', 'function scene_intro() {', 'scene_intro();']}),
    ("Scene: Own scope", "scene intro {\n  let a = 1\n}\nlet b = a", False,
     {'state': SEMANTIC, 'error_contains': "Undefined variable 'a'"}),
    ("Scene: Repeated name", "scene s {\n}\nscene s {\n}", True, {'contains': ['function scene_s_2() {']}),

    # =================================================================
    # CATEGORY 8: Syntax Errors & Recovery
    # =================================================================
    ("SyntaxErr: Missing size", "circle at (1,2) color #ABCDEF", False,
     {'state': SYNTAX, 'error_contains': 'Expected "size" keyword'}),
    ("SyntaxErr: Clauses reordered", "circle at (1, 2) color #fff size 3", False, {'state': SYNTAX}),
    ("SyntaxErr: Missing at", "rect (0, 0) width 1 height 1 color #fff", False,
     {'error_contains': 'Expected "at" after rect'}),
    ("SyntaxErr: Illegal character", "let a = 1 @ 2", False,
     {'state': SYNTAX, 'error_contains': "Unexpected character '@'"}),
    ("SyntaxErr: Lone bang", "let a = !1", False, {'state': SYNTAX}),
    ("SyntaxErr: Stray brace", "}", False, {'state': SYNTAX}),
    ("SyntaxErr: Unclosed block", "fn f() {\n  let a = 1\n", False,
     {'error_contains': 'Expected } after function body'}),
    ("SyntaxErr: Semantic skipped", "let a = nope\nlet = 1", False, {'state': SYNTAX, 'error_count': 1}),
    ("Recovery: One error per line", "let = 1\nlet b = \nlet c = 3", False, {'error_count': 2}),
    ("Recovery: Inside block", "fn f() {\n  let = 1\n  let b = 2\n}\nlet c = 3", False, {'error_count': 1}),
    ("Recovery: Deep nesting", "let a = " + "(" * 200 + "1" + ")" * 200, False,
     {'state': SYNTAX, 'error_count': 1, 'error_contains': 'Nesting too deep'}),
    ("Recovery: Long else-if chain", "let c = 1\nif c == 0 {\n}" + " else if c == 1 {\n}" * 600, False,
     {'state': SYNTAX, 'error_contains': 'Nesting too deep'}),
    ("Recovery: Long operator chain", "let a = " + " + ".join(["1"] * 2000), False,
     {'state': SYNTAX, 'error_count': 1, 'error_contains': 'Nesting too deep'}),
    ("Recovery: Stops at block end", "fn f() { let = 1 }\nlet c = 3", False, {'error_count': 1}),

    # =================================================================
    # CATEGORY 9: Emitted Names
    # =================================================================
    ("Names: Runtime binding renamed", "let ctx = 5\ncircle at (ctx, ctx) size 1 color #000", True,
     {'contains': ['var ctx$ = 5;', 'const __x = ctx$;', 'ctx.save();']}),
    ("Names: Reserved word renamed", "let new = 1\nlet b = new", True, {'contains': ['var b = new$;']}),

    # =================================================================
    # CATEGORY 10: Whitespace & Comments
    # =================================================================
    ("WS: Trailing comment", "// header\nlet a = 1 // trailing", True, {'contains': ['var a = 1;']}),
    ("WS: Carriage returns", "let a = 1\r\nlet b = a\r\n", True, None),
    ("WS: Tabs", "let\ta\t=\t1", True, None),
    ("WS: Blank lines", "\n\n\nlet a = 1\n\n\n", True, None),
]


def check_case(code: str, should_pass: bool, expected: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Compile `code` and return a failure description, or None when it behaves as expected."""
    result = MFlowCompiler("<check>").compile(code)
    if result.success != should_pass:
        got = 'pass' if result.success else 'fail'
        return f"expected {'pass' if should_pass else 'fail'}, got {got}: {result.error_messages[:2]}"
    output = result.output or ''
    for key, val in (expected or {}).items():
        if key == 'state':
            if result.state is not val:
                return f"expected state {val.name}, got {result.state.name}"
        elif key == 'contains':
            for snippet in val:
                if snippet not in output:
                    return f"output is missing {snippet!r}"
        elif key == 'excludes':
            for snippet in val:
                if snippet in output:
                    return f"output unexpectedly contains {snippet!r}"
        elif key == 'error_count':
            if len(result.errors) != val:
                return f"expected {val} error(s), got {len(result.errors)}: {result.error_messages}"
        elif key == 'error_contains':
            if not any(val in m for m in result.error_messages):
                return f"no error mentions {val!r}: {result.error_messages}"
        else:
            raise ValueError(f"Unknown expectation {key!r}")
    return None


def run_tests():
    """Run the self-check table, grouped by category."""
    print("\n" + "=" * 70)
    print("TEST SUITE")
    print("=" * 70)

    categories: Dict[str, list] = {}
    for test in TEST_CASES:
        categories.setdefault(test[0].split(":")[0], []).append(test)

    total_passed = total_failed = 0
    failed_tests = []

    for cat_name, cat_tests in categories.items():
        print(f"\n[{cat_name}]")
        cat_passed = cat_failed = 0

        for name, code, should_pass, expected in cat_tests:
            problem = check_case(code, should_pass, expected)
            if problem is None:
                print(f"  ✓ {name}")
                cat_passed += 1
            else:
                print(f"  ✗ {name}")
                print(f"      {problem}")
                cat_failed += 1
                failed_tests.append(name)

        total_passed += cat_passed
        total_failed += cat_failed
        print(f"  [{cat_passed}/{cat_passed + cat_failed} passed]")

    print("\n" + "=" * 70)
    print(f"TOTAL: {total_passed}/{total_passed + total_failed} tests passed")
    if failed_tests:
        print("\nFailed tests:")
        for t in failed_tests:
            print(f"  - {t}")
    print("=" * 70)

    return total_passed, total_failed


def main(argv: Optional[List[str]] = None) -> int:
    import argparse
    p = argparse.ArgumentParser(description='MFlow DSL Compiler')
    p.add_argument('--test', action='store_true', help='run the built-in self-check table')
    p.add_argument('--code', type=str, help='source text to compile')
    p.add_argument('--input', type=str, help='source file to compile')
    p.add_argument('--output-dir', type=str, default='.')
    p.add_argument('--html', action='store_true', help='also write preview.html')
    p.add_argument('--ast', action='store_true', help='also write ast.json')
    p.add_argument('-q', '--quiet', action='store_true', help='only report errors')
    args = p.parse_args(argv)

    if args.test:
        _, failed = run_tests()
        return 1 if failed else 0

    code, name = SAMPLE_CODE, "<sample>"
    if args.code is not None:
        code, name = args.code, "<code>"
    if args.input:
        with open(args.input, encoding='utf-8') as f:
            code = f.read()
        name = args.input

    compiler = MFlowCompiler(name)
    result = compiler.compile(code, verbose=not args.quiet)

    if not result.success:
        if args.quiet:
            for e in result.errors:
                print(compiler.messages.format(e), file=sys.stderr)
        return 1

    d = args.output_dir
    os.makedirs(d, exist_ok=True)
    with open(os.path.join(d, 'output.js'), 'w', encoding='utf-8') as f:
        f.write(result.output)
    if args.html:
        with open(os.path.join(d, 'preview.html'), 'w', encoding='utf-8') as f:
            f.write(CodeGenerator().html_page(result.output))
    if args.ast:
        with open(os.path.join(d, 'ast.json'), 'w', encoding='utf-8') as f:
            json.dump(ast_to_dict(result.program), f, indent=2)
    if not args.quiet:
        print(f"\n✓ Output saved to {d}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
