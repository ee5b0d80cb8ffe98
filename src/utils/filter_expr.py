"""Match expressions over decoded packet fields.

Examples::

    dport = 443
    proto = udp and not dst in 10.0.0.0/8
    length >= 1000 or (port = 53 and src ~ 192.168.)

Fields are the keys of ``PacketRecord.to_dict()``. List-valued fields
(``port``) match when any element matches.
"""
from __future__ import annotations

import ipaddress
from typing import Any, Callable, Dict, List, Tuple

Token = Tuple[str, str]
Predicate = Callable[[Dict[str, Any]], bool]

FIELDS = frozenset({
    "src", "dst", "sport", "dport", "port", "proto",
    "ip_proto", "ip_version", "length", "payload",
})

_OPERATORS = (">=", "<=", "!=", "=", "<", ">", "~")


class FilterSyntaxError(ValueError):
    """Raised when a match expression cannot be parsed."""
    pass


def _tokenize(expr: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    while i < len(expr):
        ch = expr[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "()":
            tokens.append((ch, ch))
            i += 1
            continue
        op = next((o for o in _OPERATORS if expr.startswith(o, i)), None)
        if op:
            tokens.append(("OP", op))
            i += len(op)
            continue
        if ch in "\"'":
            end = expr.find(ch, i + 1)
            if end < 0:
                raise FilterSyntaxError(f"Unterminated string at {i}")
            tokens.append(("WORD", expr[i + 1:end]))
            i = end + 1
            continue
        # bare words: field names, numbers, addresses, networks
        start = i
        while i < len(expr) and not expr[i].isspace() and expr[i] not in "()=<>!~\"'":
            i += 1
        if i == start:
            raise FilterSyntaxError(f"Unexpected character {ch!r} at {i}")
        word = expr[start:i]
        low = word.lower()
        if low in ("and", "or", "not"):
            tokens.append((low.upper(), low))
        elif low == "in":
            tokens.append(("OP", "in"))
        else:
            tokens.append(("WORD", word))
    tokens.append(("EOF", ""))
    return tokens


def _coerce(value: str) -> Any:
    try:
        return int(value)
    except ValueError:
        return value.lower()


def _comparison(field: str, op: str, raw: str) -> Predicate:
    if op == "in":
        try:
            network = ipaddress.ip_network(raw, strict=False)
        except ValueError as e:
            raise FilterSyntaxError(f"Bad network for {field}: {raw}") from e

        def test(value: Any) -> bool:
            try:
                return ipaddress.ip_address(value) in network
            except ValueError:
                return False
    elif op == "~":
        needle = raw.lower()

        def test(value: Any) -> bool:
            return needle in str(value).lower()
    else:
        rhs = _coerce(raw)

        def test(value: Any) -> bool:
            lhs = value.lower() if isinstance(value, str) else value
            if op == "=":
                return lhs == rhs
            if op == "!=":
                return lhs != rhs
            if not isinstance(lhs, int) or not isinstance(rhs, int):
                return False
            if op == ">":
                return lhs > rhs
            if op == ">=":
                return lhs >= rhs
            if op == "<":
                return lhs < rhs
            return lhs <= rhs

    def match(record: Dict[str, Any]) -> bool:
        value = record.get(field)
        if value is None:
            return False
        if isinstance(value, list):
            if op == "!=":
                return all(test(v) for v in value)
            return any(test(v) for v in value)
        return test(value)

    return match


class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _eat(self, kind: str) -> Token:
        tok = self._peek()
        if tok[0] != kind:
            raise FilterSyntaxError(f"Expected {kind}, got {tok[0]} {tok[1]!r}")
        self.pos += 1
        return tok

    def parse(self) -> Predicate:
        pred = self._parse_or()
        self._eat("EOF")
        return pred

    def _parse_or(self) -> Predicate:
        left = self._parse_and()
        while self._peek()[0] == "OR":
            self._eat("OR")
            right = self._parse_and()
            left = (lambda a, b: lambda r: a(r) or b(r))(left, right)
        return left

    def _parse_and(self) -> Predicate:
        left = self._parse_not()
        while self._peek()[0] == "AND":
            self._eat("AND")
            right = self._parse_not()
            left = (lambda a, b: lambda r: a(r) and b(r))(left, right)
        return left

    def _parse_not(self) -> Predicate:
        if self._peek()[0] == "NOT":
            self._eat("NOT")
            inner = self._parse_not()
            return lambda r: not inner(r)
        if self._peek()[0] == "(":
            self._eat("(")
            pred = self._parse_or()
            self._eat(")")
            return pred
        return self._parse_comparison()

    def _parse_comparison(self) -> Predicate:
        field = self._eat("WORD")[1].lower()
        if field not in FIELDS:
            raise FilterSyntaxError(
                f"Unknown field '{field}'. Available: {', '.join(sorted(FIELDS))}")
        op = self._eat("OP")[1]
        value = self._eat("WORD")[1]
        return _comparison(field, op, value)


def build_predicate(expr: str) -> Predicate:
    """Compile `expr` into a predicate over a field dict. Empty matches all."""
    if not expr or not expr.strip():
        return lambda _r: True
    return _Parser(_tokenize(expr)).parse()


def compile_record_filter(expr: str):
    """Predicate over PacketRecord objects."""
    predicate = build_predicate(expr)

    def _match(record) -> bool:
        return predicate(record.to_dict())

    return _match
