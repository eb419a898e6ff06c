"""A compact Cedar policy engine: values, entities, policy parsing and evaluation."""

from __future__ import annotations

import enum
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL_SCALE = 10_000


class CedarError(Exception):
    """Raised for invalid Cedar data or evaluation failures."""


class PolicyParseError(CedarError):
    """Raised when a policy text cannot be parsed."""


@dataclass(frozen=True)
class EntityUID:
    """Identifies an entity by type and id."""

    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.type}::{json.dumps(self.id)}"


@dataclass(frozen=True)
class Decimal:
    """Cedar decimal: a fixed-point number with four fractional digits."""

    value: int

    @classmethod
    def from_float(cls, value: float) -> Decimal:
        if not math.isfinite(value):
            raise CedarError(f"decimal value out of range: {value}")
        scaled = value * _DECIMAL_SCALE
        if not _INT64_MIN <= scaled <= _INT64_MAX:
            raise CedarError(f"decimal value out of range: {value}")
        return cls(int(scaled))

    @classmethod
    def parse(cls, text: str) -> Decimal:
        match = re.fullmatch(r"(-?)(\d+)\.(\d{1,4})", text)
        if not match:
            raise CedarError(f"invalid decimal literal: {text!r}")
        sign, whole, frac = match.groups()
        scaled = int(whole) * _DECIMAL_SCALE + int(frac.ljust(4, "0"))
        if sign:
            scaled = -scaled
        if not _INT64_MIN <= scaled <= _INT64_MAX:
            raise CedarError(f"decimal value out of range: {text}")
        return cls(scaled)

    def __str__(self) -> str:
        whole, frac = divmod(abs(self.value), _DECIMAL_SCALE)
        digits = f"{frac:04d}".rstrip("0") or "0"
        sign = "-" if self.value < 0 else ""
        return f"{sign}{whole}.{digits}"


def _key(value: Any) -> Any:
    if isinstance(value, dict):
        return ("record", tuple(sorted((k, _key(v)) for k, v in value.items())))
    return (type(value), value)


class CedarSet:
    """An unordered collection of Cedar values, compared without type coercion."""

    def __init__(self, items: Iterable[Any] = ()) -> None:
        self._items: dict[Any, Any] = {}
        for item in items:
            self._items.setdefault(_key(item), item)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item: Any) -> bool:
        return _key(item) in self._items

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CedarSet):
            return NotImplemented
        return self._items.keys() == other._items.keys()

    def __hash__(self) -> int:
        return hash(frozenset(self._items))

    def __repr__(self) -> str:
        return f"CedarSet({list(self._items.values())!r})"


@dataclass
class Entity:
    """An entity with attributes, parents and tags."""

    uid: EntityUID
    attributes: dict[str, Any] = field(default_factory=dict)
    parents: frozenset[EntityUID] = field(default_factory=frozenset)
    tags: dict[str, Any] = field(default_factory=dict)


class Decision(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class Effect(enum.Enum):
    PERMIT = "permit"
    FORBID = "forbid"


@dataclass
class Request:
    """An authorization request."""

    principal: EntityUID
    action: EntityUID
    resource: EntityUID
    context: dict[str, Any] = field(default_factory=dict)


Entities = Mapping[EntityUID, Entity]
_Node = Callable[[Request, Entities], Any]
_Scope = Callable[[EntityUID, Entities], bool]


def _eq(a: Any, b: Any) -> bool:
    return _key(a) == _key(b) if type(a) is type(b) else False


def _descends(uid: Any, target: EntityUID, entities: Entities) -> bool:
    if not isinstance(uid, EntityUID):
        raise CedarError("`in` expects an entity on its left")
    seen: set[EntityUID] = set()
    pending = [uid]
    while pending:
        current = pending.pop()
        if current == target:
            return True
        if current in seen:
            continue
        seen.add(current)
        entity = entities.get(current)
        if entity is not None:
            pending.extend(entity.parents)
    return False


def _in(a: Any, b: Any, entities: Entities) -> bool:
    if isinstance(b, EntityUID):
        return _descends(a, b, entities)
    if isinstance(b, CedarSet):
        return any(_descends(a, _as(t, EntityUID, "entity"), entities) for t in b)
    raise CedarError("`in` expects an entity or a set of entities on its right")


def _as(value: Any, kind: type, name: str) -> Any:
    if type(value) is not kind:
        raise CedarError(f"type error: expected {name}, got {type(value).__name__}")
    return value


def _attribute(value: Any, name: str, entities: Entities) -> Any:
    if isinstance(value, EntityUID):
        entity = entities.get(value)
        if entity is None:
            raise CedarError(f"entity `{value}` does not exist")
        attrs = entity.attributes
        owner = str(value)
    elif isinstance(value, dict):
        attrs = value
        owner = "record"
    else:
        raise CedarError(f"cannot access attribute `{name}` of a {type(value).__name__}")
    if name not in attrs:
        raise CedarError(f"`{owner}` does not have the attribute `{name}`")
    return attrs[name]


def _has(value: Any, name: str, entities: Entities) -> bool:
    if isinstance(value, EntityUID):
        entity = entities.get(value)
        return entity is not None and name in entity.attributes
    if isinstance(value, dict):
        return name in value
    raise CedarError("`has` expects an entity or a record")


def _long(value: int) -> int:
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise CedarError("integer overflow")
    return value


def _call_method(target: Any, name: str, args: list[Any]) -> Any:
    if name in ("contains", "containsAll", "containsAny", "isEmpty"):
        items = _as(target, CedarSet, "set")
        if name == "isEmpty":
            return len(items) == 0
        (arg,) = args
        if name == "contains":
            return arg in items
        other = _as(arg, CedarSet, "set")
        if name == "containsAll":
            return all(x in items for x in other)
        return any(x in items for x in other)
    comparisons = {
        "lessThan": lambda a, b: a < b,
        "lessThanOrEqual": lambda a, b: a <= b,
        "greaterThan": lambda a, b: a > b,
        "greaterThanOrEqual": lambda a, b: a >= b,
    }
    if name in comparisons:
        (arg,) = args
        left = _as(target, Decimal, "decimal")
        right = _as(arg, Decimal, "decimal")
        return comparisons[name](left.value, right.value)
    raise CedarError(f"unknown method `{name}`")


_LEXEME_PATTERN = re.compile(
    r"\s+|//[^\n]*"
    r'|(?P<str>"(?:[^"\\]|\\.)*")'
    r"|(?P<num>\d+)"
    r"|(?P<id>[A-Za-z_][A-Za-z0-9_]*)"
    r"|(?P<op>::|==|!=|<=|>=|&&|\|\||[<>!(),;.\[\]{}:\-+*@])"
)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", '"': '"', "'": "'", "\\": "\\", "*": "*"}


def _unquote(text: str) -> str:
    def repl(match: re.Match[str]) -> str:
        ch = match.group(1)
        if ch not in _ESCAPES:
            raise PolicyParseError(f"invalid escape sequence \\{ch}")
        return _ESCAPES[ch]

    return re.sub(r"\\(.)", repl, text[1:-1])


def _tokenize(text: str) -> list[tuple[str, str]]:
    lexemes = []
    pos = 0
    while pos < len(text):
        match = _LEXEME_PATTERN.match(text, pos)
        if not match:
            raise PolicyParseError(f"unexpected character {text[pos]!r} at offset {pos}")
        pos = match.end()
        if match.lastgroup:
            lexemes.append((match.lastgroup, match.group(match.lastgroup)))
    return lexemes


_VARIABLES = ("principal", "action", "resource", "context")


class _Parser:
    def __init__(self, text: str) -> None:
        self.lexemes = _tokenize(text)
        self.pos = 0

    def peek(self, offset: int = 0) -> tuple[str, str]:
        index = self.pos + offset
        return self.lexemes[index] if index < len(self.lexemes) else ("eof", "")

    def advance(self) -> tuple[str, str]:
        current = self.peek()
        if current[0] == "eof":
            raise PolicyParseError("unexpected end of policy")
        self.pos += 1
        return current

    def accept(self, kind: str, text: str) -> bool:
        if self.peek() == (kind, text):
            self.pos += 1
            return True
        return False

    def expect(self, kind: str, text: str | None = None) -> str:
        current = self.advance()
        if current[0] != kind or (text is not None and current[1] != text):
            wanted = text if text is not None else kind
            raise PolicyParseError(f"expected {wanted!r}, found {current[1]!r}")
        return current[1]

    def parse_policy(self) -> Policy:
        while self.accept("op", "@"):
            self.expect("id")
            self.expect("op", "(")
            self.expect("str")
            self.expect("op", ")")
        effect_text = self.expect("id")
        try:
            effect = Effect(effect_text)
        except ValueError:
            raise PolicyParseError(f"expected permit or forbid, found {effect_text!r}") from None
        self.expect("op", "(")
        principal = self.scope("principal")
        self.expect("op", ",")
        action = self.scope("action")
        self.expect("op", ",")
        resource = self.scope("resource")
        self.expect("op", ")")
        conditions = []
        while self.peek()[0] == "id" and self.peek()[1] in ("when", "unless"):
            is_when = self.advance()[1] == "when"
            self.expect("op", "{")
            conditions.append((is_when, self.expr()))
            self.expect("op", "}")
        self.expect("op", ";")
        if self.peek()[0] != "eof":
            raise PolicyParseError(f"unexpected {self.peek()[1]!r} after policy")
        return Policy(effect, principal, action, resource, conditions)

    def path(self) -> str:
        parts = [self.expect("id")]
        while self.peek() == ("op", "::") and self.peek(1)[0] == "id":
            self.pos += 1
            parts.append(self.advance()[1])
        return "::".join(parts)

    def entity_ref(self) -> EntityUID:
        entity_type = self.path()
        self.expect("op", "::")
        return EntityUID(entity_type, _unquote(self.expect("str")))

    def scope(self, var: str) -> _Scope | None:
        self.expect("id", var)
        if self.accept("op", "=="):
            uid = self.entity_ref()
            return lambda u, ents: u == uid
        if self.accept("id", "in"):
            if var == "action" and self.accept("op", "["):
                targets = [self.entity_ref()]
                while self.accept("op", ","):
                    targets.append(self.entity_ref())
                self.expect("op", "]")
                return lambda u, ents: any(_descends(u, t, ents) for t in targets)
            uid = self.entity_ref()
            return lambda u, ents: _descends(u, uid, ents)
        if var != "action" and self.accept("id", "is"):
            entity_type = self.path()
            if self.accept("id", "in"):
                parent = self.entity_ref()
                return lambda u, ents: u.type == entity_type and _descends(u, parent, ents)
            return lambda u, ents: u.type == entity_type
        return None

    def expr(self) -> _Node:
        if self.accept("id", "if"):
            cond = self.expr()
            self.expect("id", "then")
            then = self.expr()
            self.expect("id", "else")
            other = self.expr()
            return lambda r, e: then(r, e) if _as(cond(r, e), bool, "bool") else other(r, e)
        return self.or_expr()

    def or_expr(self) -> _Node:
        left = self.and_expr()
        while self.accept("op", "||"):
            left = (lambda a, b: lambda r, e: _as(a(r, e), bool, "bool") or _as(b(r, e), bool, "bool"))(
                left, self.and_expr()
            )
        return left

    def and_expr(self) -> _Node:
        left = self.relation()
        while self.accept("op", "&&"):
            left = (lambda a, b: lambda r, e: _as(a(r, e), bool, "bool") and _as(b(r, e), bool, "bool"))(
                left, self.relation()
            )
        return left

    def relation(self) -> _Node:
        left = self.additive()
        kind, text = self.peek()
        if kind == "op" and text in ("==", "!=", "<", "<=", ">", ">="):
            self.pos += 1
            right = self.additive()
            if text == "==":
                return lambda r, e: _eq(left(r, e), right(r, e))
            if text == "!=":
                return lambda r, e: not _eq(left(r, e), right(r, e))
            compare = {
                "<": lambda a, b: a < b,
                "<=": lambda a, b: a <= b,
                ">": lambda a, b: a > b,
                ">=": lambda a, b: a >= b,
            }[text]
            return lambda r, e: compare(_as(left(r, e), int, "long"), _as(right(r, e), int, "long"))
        if self.accept("id", "in"):
            right = self.additive()
            return lambda r, e: _in(left(r, e), right(r, e), e)
        if self.accept("id", "has"):
            kind, text = self.advance()
            if kind not in ("id", "str"):
                raise PolicyParseError(f"expected attribute name after has, found {text!r}")
            name = text if kind == "id" else _unquote(text)
            return lambda r, e: _has(left(r, e), name, e)
        return left

    def additive(self) -> _Node:
        left = self.multiplicative()
        while self.peek() in (("op", "+"), ("op", "-")):
            op = self.advance()[1]
            right = self.multiplicative()
            if op == "+":
                left = (lambda a, b: lambda r, e: _long(_as(a(r, e), int, "long") + _as(b(r, e), int, "long")))(left, right)
            else:
                left = (lambda a, b: lambda r, e: _long(_as(a(r, e), int, "long") - _as(b(r, e), int, "long")))(left, right)
        return left

    def multiplicative(self) -> _Node:
        left = self.unary()
        while self.accept("op", "*"):
            left = (lambda a, b: lambda r, e: _long(_as(a(r, e), int, "long") * _as(b(r, e), int, "long")))(
                left, self.unary()
            )
        return left

    def unary(self) -> _Node:
        if self.accept("op", "!"):
            inner = self.unary()
            return lambda r, e: not _as(inner(r, e), bool, "bool")
        if self.accept("op", "-"):
            if self.peek()[0] == "num":
                value = _long(-int(self.advance()[1]))
                return lambda r, e: value
            inner = self.unary()
            return lambda r, e: _long(-_as(inner(r, e), int, "long"))
        return self.member()

    def member(self) -> _Node:
        node = self.primary()
        while True:
            if self.accept("op", "."):
                name = self.expect("id")
                if self.accept("op", "("):
                    args = self.arguments(")")
                    node = (lambda t, n, a: lambda r, e: _call_method(t(r, e), n, [x(r, e) for x in a]))(node, name, args)
                else:
                    node = (lambda t, n: lambda r, e: _attribute(t(r, e), n, e))(node, name)
            elif self.accept("op", "["):
                name = _unquote(self.expect("str"))
                self.expect("op", "]")
                node = (lambda t, n: lambda r, e: _attribute(t(r, e), n, e))(node, name)
            else:
                return node

    def arguments(self, closing: str) -> list[_Node]:
        args: list[_Node] = []
        if self.accept("op", closing):
            return args
        args.append(self.expr())
        while self.accept("op", ","):
            args.append(self.expr())
        self.expect("op", closing)
        return args

    def primary(self) -> _Node:
        kind, text = self.peek()
        if kind == "str":
            self.pos += 1
            value = _unquote(text)
            return lambda r, e: value
        if kind == "num":
            self.pos += 1
            number = _long(int(text))
            return lambda r, e: number
        if kind == "op" and text == "(":
            self.pos += 1
            inner = self.expr()
            self.expect("op", ")")
            return inner
        if kind == "op" and text == "[":
            self.pos += 1
            items = self.arguments("]")
            return lambda r, e: CedarSet(x(r, e) for x in items)
        if kind == "op" and text == "{":
            self.pos += 1
            fields: list[tuple[str, _Node]] = []
            if not self.accept("op", "}"):
                while True:
                    key_kind, key = self.advance()
                    if key_kind not in ("id", "str"):
                        raise PolicyParseError(f"invalid record key {key!r}")
                    self.expect("op", ":")
                    fields.append((key if key_kind == "id" else _unquote(key), self.expr()))
                    if not self.accept("op", ","):
                        break
                self.expect("op", "}")
            return lambda r, e: {k: v(r, e) for k, v in fields}
        if kind == "id":
            if text in ("true", "false"):
                self.pos += 1
                flag = text == "true"
                return lambda r, e: flag
            if self.peek(1) == ("op", "::"):
                uid = self.entity_ref()
                return lambda r, e: uid
            if text in _VARIABLES:
                self.pos += 1
                return lambda r, e: getattr(r, text)
            if text == "decimal" and self.peek(1) == ("op", "("):
                self.pos += 2
                literal = Decimal.parse(_unquote(self.expect("str")))
                self.expect("op", ")")
                return lambda r, e: literal
        raise PolicyParseError(f"unexpected {text!r}" if text else "unexpected end of policy")


@dataclass
class Policy:
    """A parsed permit or forbid policy."""

    effect: Effect
    principal: _Scope | None
    action: _Scope | None
    resource: _Scope | None
    conditions: list[tuple[bool, _Node]]

    def matches(self, request: Request, entities: Entities) -> bool:
        """Whether the policy applies; raises CedarError if evaluation fails."""
        for scope, uid in (
            (self.principal, request.principal),
            (self.action, request.action),
            (self.resource, request.resource),
        ):
            if scope is not None and not scope(uid, entities):
                return False
        for is_when, condition in self.conditions:
            result = _as(condition(request, entities), bool, "bool")
            if result != is_when:
                return False
        return True


def parse_policy(text: str) -> Policy:
    """Parse a single Cedar policy."""
    return _Parser(text).parse_policy()


class PolicySet:
    """Named policies evaluated together; forbid overrides permit, default deny."""

    def __init__(self) -> None:
        self.policies: dict[str, Policy] = {}

    def add(self, policy_id: str, policy: Policy) -> None:
        self.policies[policy_id] = policy

    def __len__(self) -> int:
        return len(self.policies)

    def is_authorized(self, entities: Entities, request: Request) -> tuple[Decision, list[str]]:
        """Return the decision and the list of evaluation errors."""
        permitted = forbidden = False
        errors: list[str] = []
        for policy_id, policy in self.policies.items():
            try:
                applies = policy.matches(request, entities)
            except CedarError as exc:
                errors.append(f"while evaluating policy `{policy_id}`: {exc}")
                continue
            if applies:
                if policy.effect is Effect.FORBID:
                    forbidden = True
                else:
                    permitted = True
        decision = Decision.ALLOW if permitted and not forbidden else Decision.DENY
        return decision, errors


def _uid_from_json(data: Any) -> EntityUID:
    if isinstance(data, dict) and "__entity" in data:
        data = data["__entity"]
    if not isinstance(data, dict) or not isinstance(data.get("type"), str) or not isinstance(data.get("id"), str):
        raise CedarError(f"invalid entity uid: {data!r}")
    return EntityUID(data["type"], data["id"])


def _value_from_json(data: Any) -> Any:
    if isinstance(data, (bool, str)):
        return data
    if isinstance(data, int):
        return _long(data)
    if isinstance(data, list):
        return CedarSet(_value_from_json(item) for item in data)
    if isinstance(data, dict):
        if "__entity" in data:
            return _uid_from_json(data)
        if "__extn" in data:
            extn = data["__extn"]
            if not isinstance(extn, dict) or extn.get("fn") != "decimal":
                raise CedarError(f"unsupported extension value: {extn!r}")
            return Decimal.parse(str(extn.get("arg")))
        return {k: _value_from_json(v) for k, v in data.items()}
    raise CedarError(f"unsupported JSON value: {data!r}")


def entities_from_json(text: str) -> dict[EntityUID, Entity]:
    """Parse a JSON list of entities into a map keyed by uid."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CedarError(f"invalid entities JSON: {exc}") from exc
    if not isinstance(data, list):
        raise CedarError("entities JSON must be a list")
    entities: dict[EntityUID, Entity] = {}
    for item in data:
        if not isinstance(item, dict):
            raise CedarError(f"invalid entity: {item!r}")
        uid = _uid_from_json(item.get("uid"))
        attrs = item.get("attrs") or {}
        tags = item.get("tags") or {}
        if not isinstance(attrs, dict) or not isinstance(tags, dict):
            raise CedarError(f"invalid attributes for entity {uid}")
        entities[uid] = Entity(
            uid=uid,
            attributes={k: _value_from_json(v) for k, v in attrs.items()},
            parents=frozenset(_uid_from_json(p) for p in item.get("parents") or []),
            tags={k: _value_from_json(v) for k, v in tags.items()},
        )
    return entities