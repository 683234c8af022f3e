"""Filter values for narrowing feedback, users and subjects before aggregation.

A filter is either ``ALL`` (no filtering on that dimension) or ``Value(v)``.
The ``'all'`` string used by the dashboard forms is only understood by
:func:`parse_filter`; everything past the request boundary works with the
tagged values.
"""
from dataclasses import dataclass, field


class All:
    """Matches every candidate."""

    __slots__ = ()
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def matches(self, candidate):
        return True

    def __repr__(self):
        return 'ALL'

    def __bool__(self):
        return False


ALL = All()


@dataclass(frozen=True)
class Value:
    """Matches candidates whose string form equals ``value``."""

    value: object

    def matches(self, candidate):
        if candidate is None:
            return False
        return str(candidate).strip() == str(self.value).strip()


def parse_filter(raw):
    """Return ALL for a missing, empty or 'all' value, otherwise Value(raw)."""
    if isinstance(raw, (All, Value)):
        return raw
    if raw is None:
        return ALL
    text = str(raw).strip()
    if not text or text.lower() == 'all':
        return ALL
    return Value(text)


@dataclass(frozen=True)
class FilterCriteria:
    term: object = ALL
    branch: object = ALL
    year: object = ALL
    role: object = ALL
    search: str = field(default='')

    def __post_init__(self):
        for name in ('term', 'branch', 'year', 'role'):
            object.__setattr__(self, name, parse_filter(getattr(self, name)))
        object.__setattr__(self, 'search', str(self.search or '').strip())

    @classmethod
    def from_args(cls, args):
        """Build criteria from request arguments (or any mapping)."""
        search = args.get('search') or args.get('searchQuery') or ''
        return cls(
            term=parse_filter(args.get('term')),
            branch=parse_filter(args.get('branch')),
            year=parse_filter(args.get('year')),
            role=parse_filter(args.get('role')),
            search=str(search).strip(),
        )

    @classmethod
    def coerce(cls, criteria):
        if criteria is None:
            return cls()
        if isinstance(criteria, cls):
            return criteria
        return cls.from_args(criteria)

    def is_empty(self):
        return not (self.term or self.branch or self.year or self.role or self.search)

    def to_args(self):
        """Return the criteria as query arguments, 'all' for unset filters."""
        args = {}
        for name in ('term', 'branch', 'year', 'role'):
            value = getattr(self, name)
            args[name] = value.value if isinstance(value, Value) else 'all'
        args['search'] = self.search
        return args
