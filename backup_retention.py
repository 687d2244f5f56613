#
# backup-retention
#
# Tiered retention decisions (keep last / hourly / daily / weekly / monthly / yearly) for backup files and folders.
#
# Copyright (c) 2025-2026 Thomas Kuhlmann
#
# Licensed under the MIT License. See LICENSE file in the project root for license information.
#

import argparse
import difflib
import json
import os
import re
import shutil
import sys
import traceback
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from pathlib import Path
from types import SimpleNamespace
from typing import Any, NoReturn, Optional, TextIO, Union, no_type_check


VERSION: str = "1.0.0"

# Resolved paths with fewer separator levels than this are never pruned by the local pruner (e.g. '/', '/srv', '/srv/backup')
MIN_PRUNE_DEPTH: int = 3

URL_SCHEME = re.compile(r"^[0-9a-zA-Z_+.-]+://")


class RetentionError(Exception):
    pass


class ContractViolationError(RetentionError):
    pass


class UnsafeOperationError(RetentionError):
    pass


class DisposalError(RetentionError):
    def __init__(self, item: "Item", message: str) -> None:
        super().__init__(message)
        self.item = item


class NothingToKeepError(RetentionError):
    pass


class IntegrityCheckFailedError(RetentionError):
    pass


class ConfigNamespace(SimpleNamespace):
    pass


@dataclass(frozen=True)
class Item:
    """One dated artifact. Calendar fields are derived from the UTC timestamp and cannot be passed in."""

    path: str
    timestamp: datetime
    is_directory: bool = False
    year: int = field(init=False, compare=False, repr=False)
    month: int = field(init=False, compare=False, repr=False)
    iso_year: int = field(init=False, compare=False, repr=False)
    iso_week: int = field(init=False, compare=False, repr=False)
    day: int = field(init=False, compare=False, repr=False)
    hour: int = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.timestamp, datetime):
            raise TypeError(f"Timestamp of '{self.path}' must be a datetime, got {type(self.timestamp).__name__}")
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise ValueError(f"Timestamp of '{self.path}' must be timezone-aware: {self.timestamp}")
        utc = self.timestamp.astimezone(timezone.utc)
        iso_year, iso_week, _ = utc.isocalendar()
        object.__setattr__(self, "path", os.fspath(self.path))
        object.__setattr__(self, "timestamp", utc)
        object.__setattr__(self, "is_directory", bool(self.is_directory))
        object.__setattr__(self, "year", utc.year)
        object.__setattr__(self, "month", utc.month)
        object.__setattr__(self, "iso_year", iso_year)
        object.__setattr__(self, "iso_week", iso_week)
        object.__setattr__(self, "day", utc.day)
        object.__setattr__(self, "hour", utc.hour)

    @classmethod
    def from_epoch(cls, path: Union[str, "os.PathLike[str]"], seconds: float, is_directory: bool = False) -> "Item":
        return cls(os.fspath(path), datetime.fromtimestamp(seconds, tz=timezone.utc), is_directory)

    @property
    def name(self) -> str:
        return Path(self.path).name or self.path

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "timestamp": self.timestamp.isoformat(),
            "year": self.year,
            "month": self.month,
            "iso_week": self.iso_week,
            "day": self.day,
            "hour": self.hour,
            "is_directory": self.is_directory,
        }


def sort_items(items: Iterable[Item]) -> list[Item]:
    return sorted(items, key=lambda item: item.timestamp, reverse=True)  # stable => ties keep discovery order


class Tier(str, Enum):
    LAST = "last"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    def period_key(self, item: Item) -> tuple[int, ...]:
        if self is Tier.HOURLY:
            return (item.year, item.month, item.day, item.hour)
        elif self is Tier.DAILY:
            return (item.year, item.month, item.day)
        elif self is Tier.WEEKLY:
            return (item.iso_year, item.iso_week)
        elif self is Tier.MONTHLY:
            return (item.year, item.month)
        elif self is Tier.YEARLY:
            return (item.year,)
        raise ValueError(f"Tier '{self.value}' has no period")


PERIODIC_TIERS: tuple[Tier, ...] = (Tier.HOURLY, Tier.DAILY, Tier.WEEKLY, Tier.MONTHLY, Tier.YEARLY)


def non_negative_int(name: str, value: Any) -> int:
    try:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ValueError
        count = int(value)
        if count < 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value '{value}' for {name}: must be an integer >= 0")
    return count


@dataclass(frozen=True)
class PolicyConfig:
    keep_last: int = 0
    keep_hourly: int = 0
    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0
    keep_yearly: int = 0

    def __post_init__(self) -> None:
        for tier in Tier:
            name = f"keep_{tier.value}"
            object.__setattr__(self, name, non_negative_int(name.replace("_", "-"), getattr(self, name)))
        if self.keep_last == 0:  # never delete everything
            object.__setattr__(self, "keep_last", 1)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "PolicyConfig":
        counts: dict[str, Any] = {}
        for tier in Tier:
            for key in (f"keep-{tier.value}", f"keep_{tier.value}"):
                if mapping.get(key) is not None:
                    counts[f"keep_{tier.value}"] = mapping[key]
        return cls(**counts)

    def count(self, tier: Tier) -> int:
        return int(getattr(self, f"keep_{tier.value}"))


class LogLevel(IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    @classmethod
    def from_name_or_number(cls, prefix: str) -> "LogLevel":
        try:
            return next(m for m in cls if m.name.startswith(prefix.upper()))
        except StopIteration:
            try:
                return cls(int(prefix))
            except ValueError:
                raise ValueError("Invalid log level: " + prefix)


class Logger:
    _level: LogLevel
    _decisions: dict[Item, list[tuple[str, Optional[str]]]]

    def __init__(self, level: LogLevel = LogLevel.ERROR) -> None:
        self._level = level
        self._decisions = defaultdict(list)

    def _get_item_attributes(self, item: Item) -> str:
        return f"time: {item.timestamp.isoformat()}" + (", directory" if item.is_directory else "")

    def has_log_level(self, level: LogLevel) -> bool:
        return level <= int(self._level)

    def _raw_verbose(self, level: LogLevel, message: str, file: Optional[TextIO] = None, prefix: str = "") -> None:
        print(f"[{prefix or LogLevel(level).name}] {message}", file=file or sys.stderr)

    def verbose(self, level: LogLevel, message: str, file: Optional[TextIO] = None, prefix: str = "") -> None:
        if self.has_log_level(level):
            self._raw_verbose(level, message, file, prefix)

    def add_decision(self, level: LogLevel, item: Item, message: str, debug: Optional[str] = None, pos: int = 0) -> None:
        if self.has_log_level(level):
            if self.has_log_level(LogLevel.DEBUG):  # Decision history and item details only with debug log level
                self._decisions[item].insert(pos, (message, f"{(debug + ', ') if debug is not None else ''}{self._get_item_attributes(item)}"))
            elif self._decisions[item]:
                self._decisions[item][0] = (message, None)
            else:
                self._decisions[item].insert(0, (message, None))

    def decisions(self, item: Item) -> list[tuple[str, Optional[str]]]:
        return list(self._decisions.get(item, []))

    def _format_decision(self, decision: tuple[str, Optional[str]]) -> str:
        message, debug = decision
        return message + (f" ({debug})" if debug is not None else "")

    def print_decisions(self) -> None:
        if not self._decisions:
            return
        longest_name_length = max(len(item.name) for item in self._decisions)
        for item in sort_items(self._decisions):
            decisions = self._decisions[item]
            if not decisions:
                continue
            self._raw_verbose(LogLevel.INFO, f"{item.name:<{longest_name_length}}: {self._format_decision(decisions[0])}")
            if not self.has_log_level(LogLevel.DEBUG):
                continue
            for idx, decision in enumerate(decisions[1:]):
                self._raw_verbose(LogLevel.DEBUG, f"{' ' * ((longest_name_length + 2) + idx * 4)}└── {self._format_decision(decision)}")


Grouper = Callable[[str], Optional[str]]
Finder = Callable[[str], Iterable[Item]]
TimeResolver = Callable[[str, bool], Optional[Item]]
Pruner = Callable[[Item], Optional[bool]]


@dataclass(frozen=True)
class RetentionUnit:
    items: tuple[Item, ...]
    key: Optional[str] = None

    @property
    def representative(self) -> Item:
        return self.items[0]

    def __iter__(self) -> Iterator[Item]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


def group_items(items: Sequence[Item], grouper: Optional[Grouper] = None) -> list[RetentionUnit]:
    """Merge items sharing a group key into one unit; ``items`` must be sorted newest first, so units are too."""
    if grouper is None:
        return [RetentionUnit((item,)) for item in items]

    members: list[tuple[Optional[str], list[Item]]] = []
    groups: dict[str, list[Item]] = {}
    for item in items:
        key = grouper(item.path)
        if not key:
            members.append((None, [item]))
        elif key in groups:
            groups[key].append(item)
        else:
            groups[key] = [item]
            members.append((key, groups[key]))
    return [RetentionUnit(tuple(sort_items(unit_items)), key) for key, unit_items in members]


def regex_grouper(pattern: Union[str, "re.Pattern[str]"]) -> Grouper:
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def group_key(path: str) -> Optional[str]:
        match = compiled.search(Path(path).name)
        if match is None:
            return None
        return match.group(1) if compiled.groups else match.group(0)

    return group_key


@dataclass(frozen=True)
class Decision:
    unit: RetentionUnit
    reasons: tuple[Tier, ...] = ()

    @property
    def kept(self) -> bool:
        return bool(self.reasons)


class RetentionLogic:
    """Single newest-to-oldest pass over the units; one instance per run, all bucket state lives here."""

    _units: Sequence[RetentionUnit]
    _policy: PolicyConfig
    _logger: Logger
    _last_count: int
    _seen: dict[Tier, set[tuple[int, ...]]]

    def __init__(self, units: Sequence[RetentionUnit], policy: PolicyConfig, logger: Optional[Logger] = None) -> None:
        self._units = units
        self._policy = policy
        self._logger = logger if logger is not None else Logger()
        self._last_count = 0
        self._seen = {tier: set() for tier in PERIODIC_TIERS if policy.count(tier) > 0}

    def _log_unit(self, level: LogLevel, unit: RetentionUnit, message: str, debug: Optional[str] = None, pos: int = 0) -> None:
        if unit.key is not None:
            debug = f"group: {unit.key}" + (f", {debug}" if debug is not None else "")
        for item in unit:
            self._logger.add_decision(level, item, message, debug=debug, pos=pos)

    def _process_unit(self, unit: RetentionUnit) -> Decision:
        item = unit.representative
        reasons: list[Tier] = []
        positions: list[str] = []
        notes: list[tuple[str, str]] = []

        if self._last_count < self._policy.keep_last:
            self._last_count += 1
            reasons.append(Tier.LAST)
            positions.append(f"'{Tier.LAST.value}' {self._last_count:02d}/{self._policy.keep_last:02d}")

        for tier, seen in self._seen.items():
            key = tier.period_key(item)
            count = self._policy.count(tier)
            if key in seen:
                notes.append((f"Skipping for '{tier.value}' as period already represented by a newer item", f"key: {key}"))
                continue
            if len(seen) < count:
                reasons.append(tier)
                positions.append(f"'{tier.value}' {len(seen) + 1:02d}/{count:02d}")
            else:
                notes.append((f"Skipping for '{tier.value}' as all {count:02d} periods are represented", f"key: {key}"))
            seen.add(key)  # the newest unit of a period occupies its slot, kept for this tier or not

        if reasons:
            self._log_unit(LogLevel.INFO, unit, "Keeping for " + ", ".join(positions))
        else:
            self._log_unit(LogLevel.INFO, unit, "Pruning: not matched by any retention rule")
        for idx, (note, debug) in enumerate(notes, start=1):
            self._log_unit(LogLevel.DEBUG, unit, note, debug=debug, pos=idx)
        return Decision(unit, tuple(reasons))

    def process_retention_logic(self) -> list[Decision]:
        decisions = [self._process_unit(unit) for unit in self._units]
        if decisions and not any(decision.kept for decision in decisions):
            decisions[0] = Decision(self._units[0], (Tier.LAST,))
            self._log_unit(LogLevel.INFO, self._units[0], "Keeping newest: nothing else is kept")
        return decisions


@dataclass
class RetentionResult:
    keep: list[tuple[Item, tuple[Tier, ...]]]
    prune: list[Item]
    start_time: datetime
    end_time: datetime

    @property
    def kept_items(self) -> list[Item]:
        return [item for item, _ in self.keep]

    def reasons_for(self, item: Item) -> tuple[Tier, ...]:
        return next((reasons for kept, reasons in self.keep if kept == item), ())

    def to_dict(self) -> dict[str, Any]:
        return {
            "keep": [{"item": item.to_dict(), "reasons": [reason.value for reason in reasons]} for item, reasons in self.keep],
            "prune": [item.to_dict() for item in self.prune],
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


def partition_decisions(decisions: Iterable[Decision]) -> tuple[list[tuple[Item, tuple[Tier, ...]]], list[Item]]:
    keep: list[tuple[Item, tuple[Tier, ...]]] = []
    prune: list[Item] = []
    for decision in decisions:
        if decision.kept:
            keep.extend((item, decision.reasons) for item in decision.unit)
        else:
            prune.extend(decision.unit)
    return keep, prune


def check_integrity(items: Sequence[Item], keep: Sequence[tuple[Item, tuple[Tier, ...]]], prune: Sequence[Item]) -> None:
    kept = [item for item, _ in keep]
    if len(items) != len(kept) + len(prune):
        raise IntegrityCheckFailedError(f"Item count mismatch: some items are neither kept nor pruned (all: {len(items)}, keep: {len(kept)}, prune: {len(prune)})!!")
    if set(kept) & set(prune):
        raise IntegrityCheckFailedError("Item decision mismatch: some items are both kept and pruned!!")


def resolve_time(path: str, is_directory: bool = False) -> Optional[Item]:
    stats = os.stat(path, follow_symlinks=False)  # links are not followed
    return Item.from_epoch(path, stats.st_mtime or stats.st_ctime, is_directory)


def read_directory(target: str, time_resolver: TimeResolver = resolve_time, exclude: Optional["re.Pattern[str]"] = None) -> list[Item]:
    base: Path = Path(target)
    if not base.exists():
        raise FileNotFoundError(f"Path not found: {base}")
    if not base.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {base}")

    items: list[Item] = []
    for entry in sorted(base.iterdir(), key=lambda p: p.name):  # non-recursive, name order as discovery order
        path = str(entry)
        if exclude is not None and exclude.search(path):
            continue
        item = time_resolver(path, entry.is_dir() and not entry.is_symlink())
        if item is None:
            continue
        if not isinstance(item, Item):
            raise ContractViolationError(f"Time resolver must return an Item or None for '{path}', got {type(item).__name__}")
        items.append(item)
    return items


def prune_local(item: Item) -> bool:
    if URL_SCHEME.match(item.path):
        raise UnsafeOperationError(f"Pruning '{item.path}' is not supported by the local pruner (not a local path)")

    path = Path(os.path.abspath(item.path))
    resolved = path.parent.resolve() / path.name  # the entry itself, symlinks are not followed
    if len(resolved.parts) - 1 < MIN_PRUNE_DEPTH:
        raise UnsafeOperationError(f"Pruning is not allowed in '{item.path}', because it is marked as risky. The directory depth must be at least {MIN_PRUNE_DEPTH}.")

    if item.is_directory and not resolved.is_symlink():
        shutil.rmtree(resolved)
    else:
        resolved.unlink()
    return True


class Retention:
    """Finds the items of a target, decides what to keep and prunes the rest."""

    _policy: PolicyConfig
    _finder: Optional[Finder]
    _time_resolver: TimeResolver
    _pruner: Pruner
    _grouper: Optional[Grouper]
    _exclude: Optional["re.Pattern[str]"]
    _logger: Logger

    def __init__(
        self,
        policy: Union[PolicyConfig, Mapping[str, Any], None] = None,
        *,
        finder: Optional[Finder] = None,
        time_resolver: Optional[TimeResolver] = None,
        pruner: Optional[Pruner] = None,
        grouper: Optional[Grouper] = None,
        exclude_pattern: Union[str, "re.Pattern[str]", None] = None,
        dry_run: bool = False,
        logger: Optional[Logger] = None,
    ) -> None:
        self._policy = policy if isinstance(policy, PolicyConfig) else PolicyConfig.from_mapping(policy or {})
        self._finder = finder
        self._time_resolver = time_resolver or resolve_time
        self._pruner = pruner or prune_local
        self._grouper = grouper
        self._exclude = compile_regex(exclude_pattern) if isinstance(exclude_pattern, str) else exclude_pattern
        self.dry_run = dry_run
        self._logger = logger if logger is not None else Logger()

    @property
    def policy(self) -> PolicyConfig:
        return self._policy

    def find_items(self, target: str) -> list[Item]:
        if self._finder is None:
            return sort_items(read_directory(target, self._time_resolver, self._exclude))

        found = self._finder(target)
        if isinstance(found, (str, bytes)) or not isinstance(found, Iterable):
            raise ContractViolationError(f"Finder must return an iterable of Item objects, got {type(found).__name__}")
        items = list(found)
        for item in items:
            if not isinstance(item, Item):
                raise ContractViolationError(f"Finder must return an iterable of Item objects, got {type(item).__name__}: {item!r}")
        return sort_items(items)

    def _prune_item(self, item: Item) -> None:
        if self.dry_run:
            self._logger.verbose(LogLevel.INFO, f"DRY-RUN PRUNE: {item.name} (time: {item.timestamp})")
            return
        self._logger.verbose(LogLevel.INFO, f"PRUNING: {item.name} (time: {item.timestamp})")
        try:
            pruned = self._pruner(item)
        except RetentionError:
            raise
        except Exception as e:
            raise DisposalError(item, f"'{item.path}' could not be pruned: {e}") from e
        if pruned is False:
            raise DisposalError(item, f"Pruning '{item.path}' failed unexpectedly")

    def apply(self, target: str) -> RetentionResult:
        start_time = datetime.now(timezone.utc)
        self._logger.verbose(LogLevel.DEBUG, f"Retention policy: {self._policy}")

        items = self.find_items(target)
        self._logger.verbose(LogLevel.INFO, f"Found {len(items)} items in '{target}'")
        self._logger.verbose(LogLevel.DEBUG, "Items found: " + ", ".join(f'"{item.name}"' for item in items))
        if not items:
            raise NothingToKeepError(f"No items found in '{target}': there must be at least one item to keep")

        units = group_items(items, self._grouper)
        decisions = RetentionLogic(units, self._policy, self._logger).process_retention_logic()
        keep, prune = partition_decisions(decisions)
        if not keep:
            raise NothingToKeepError(f"Nothing to keep in '{target}': there must be at least one item to keep")
        check_integrity(items, keep, prune)

        self._logger.print_decisions()
        self._logger.verbose(LogLevel.INFO, f"Total items found: {len(items):03d}")
        self._logger.verbose(LogLevel.INFO, f"Total items keep:  {len(keep):03d}")
        self._logger.verbose(LogLevel.INFO, f"Total items prune: {len(prune):03d}")

        for item in prune:
            self._prune_item(item)
        if self.dry_run:
            self._logger.verbose(LogLevel.DEBUG, "Nothing pruned because of dry-run")

        return RetentionResult(keep, prune, start_time, datetime.now(timezone.utc))


def compile_regex(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern, re.UNICODE)
    except re.error:
        raise ValueError(f"Invalid regular expression: {pattern}")


class RetentionHelpFormatter(argparse.RawDescriptionHelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=32, width=150)

    def start_section(self, heading: Optional[str]) -> None:
        super().start_section(heading.title() if heading else heading)


class StrictArgumentParser(argparse.ArgumentParser):
    """Collects every problem of one command line (unknown or repeated options, bad regexes) and reports them together."""

    _problems: list[str]

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._problems = []

    def add_error(self, msg: str) -> None:
        if msg not in self._problems:
            self._problems.append(msg)

    def error(self, message: str) -> NoReturn:
        self.print_usage()
        details = "\n".join(f"  • {line}" for line in message.splitlines())
        print(f"\nError(s):\n{details}\n\nHint: Try '--help' for more information.")
        sys.exit(2)

    # Argument types
    def non_negative_int_argument(self, value: str) -> int:
        try:
            return non_negative_int("value", int(value))
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid value '{value}': must be an integer >= 0")

    def verbose_argument(self, value: str) -> LogLevel:
        try:
            return LogLevel.from_name_or_number(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid verbose value '{value}' (use ERROR, WARN, INFO, DEBUG or 0, 1, 2, 3)")

    def regex_argument(self, ns: argparse.Namespace, name: str) -> None:
        pattern = getattr(ns, name)
        compiled = None
        if pattern is not None:
            try:
                compiled = compile_regex(pattern)
            except ValueError as e:
                self.add_error(str(e))
        setattr(ns, f"{name}_compiled", compiled)

    def _closest_option(self, token: str) -> Optional[str]:
        long_options = [option for option in self._option_string_actions if option.startswith("--")]
        matches = difflib.get_close_matches(token.split("=", 1)[0], long_options, n=1, cutoff=0.75)
        return matches[0] if matches else None

    def _option_key(self, token: str) -> Optional[str]:
        if not token.startswith("-") or token == "-":
            return None
        option = token.split("=", 1)[0]
        if not option.startswith("--"):
            option = option[:2]  # -d3 is -d
        action = self._option_string_actions.get(option)
        return action.option_strings[0] if action is not None else option

    def _check_repeated_options(self, tokens: Sequence[str]) -> None:
        counts = Counter(key for key in map(self._option_key, tokens) if key is not None)
        for key, count in counts.items():
            if count > 1:
                self.add_error(f"Duplicate flag: {key}")

    @no_type_check
    def _validate_arguments(self, ns) -> None:  # noqa: ANN001
        # json output stays clean unless asked for, dry-run shows what would happen
        if ns.verbose is None:
            ns.verbose = LogLevel.ERROR if ns.json else LogLevel.INFO
        if ns.dry_run and not ns.json and not ns.verbose:
            ns.verbose = LogLevel.INFO

        self.regex_argument(ns, "exclude")
        self.regex_argument(ns, "group")

    @no_type_check
    def parse_known_args(self, args=None, namespace=None) -> tuple[argparse.Namespace, list[str]]:  # noqa: ANN001
        self._problems = []
        tokens = list(sys.argv[1:] if args is None else args)
        self._check_repeated_options(tokens)

        ns, unknown = super().parse_known_args(tokens, namespace)

        for token in unknown[:1]:
            suggestion = self._closest_option(token)
            self.add_error(f"Unknown option: {token}" + (f" (did you mean {suggestion}?)" if suggestion else ""))

        self._validate_arguments(ns)

        if self._problems:
            self.error("\n".join(self._problems))
        return ns, unknown


def create_parser() -> StrictArgumentParser:
    parser: StrictArgumentParser = StrictArgumentParser(
        description=f"backup-retention {VERSION}\n\nKeep the last N backups plus one per hour, day, week, month and year, prune the rest",
        usage=("backup-retention path [options]\n\nExample:\n  backup-retention /data/backups -l 2 -d 7 -w 4 -m 6 -y 2"),
        epilog="Use with caution!! This tool deletes files and folders unless --dry-run is set.",
        formatter_class=RetentionHelpFormatter,
        add_help=False,
    )

    g_main = parser.add_argument_group("Main arguments")
    g_ret = parser.add_argument_group("Retention arguments")
    g_filter = parser.add_argument_group("Filter arguments")
    g_behavior = parser.add_argument_group("Behavior arguments")
    g_common = parser.add_argument_group("Common arguments")

    # positional arguments
    g_main.add_argument("path", help="Base directory to scan (recursion is not supported, entries may be files or folders)")

    # retention arguments (keep-last is at least 1)
    g_ret.add_argument("--keep-last", "-l", type=parser.non_negative_int_argument, metavar="N", default=0, help="Always keep the N most recent items (minimum and default: 1)")
    g_ret.add_argument("--keep-hourly", "-h", type=parser.non_negative_int_argument, metavar="N", default=0, help="Keep one item per hour for the last N hours with items")
    g_ret.add_argument("--keep-daily", "-d", type=parser.non_negative_int_argument, metavar="N", default=0, help="Keep one item per day for the last N days with items")
    g_ret.add_argument("--keep-weekly", "-w", type=parser.non_negative_int_argument, metavar="N", default=0, help="Keep one item per ISO week for the last N weeks with items")
    g_ret.add_argument("--keep-monthly", "-m", type=parser.non_negative_int_argument, metavar="N", default=0, help="Keep one item per month for the last N months with items")
    g_ret.add_argument("--keep-yearly", "-y", type=parser.non_negative_int_argument, metavar="N", default=0, help="Keep one item per year for the last N years with items")

    # filter arguments
    g_filter.add_argument("--exclude", "-e", type=str, default=None, metavar="regex", help="Ignore entries whose full path matches the regex (a regex starting with '-' needs the '=' form: --exclude=-old$)")
    g_filter.add_argument("--group", "-g", type=str, default=None, metavar="regex", help="Keep or prune entries together, grouped by the first capture group (or whole match) of the regex in the entry name (a regex starting with '-' needs the '=' form: --group=-(\\d{8})\\.)")

    # behavior flags
    # fmt: off
    g_behavior.add_argument("--verbose", "-V", "-v", type=parser.verbose_argument, default=None, nargs="?", const=LogLevel.INFO, metavar="lev",
        help="Verbosity level: 0 = error, 1 = warn, 2 = info, 3 = debug (default: 'info'; 'error' with --json; use numbers or names)")
    # fmt: on
    g_behavior.add_argument("--dry-run", "-X", action="store_true", help="Show planned actions but do not prune anything")
    g_behavior.add_argument("--json", "-j", action="store_true", help="Print the result as JSON on stdout")

    # common flags
    g_common.add_argument("--version", "-R", action="version", version=f"%(prog)s {VERSION}")
    g_common.add_argument("--help", "-H", action="help", help="Show this help message and exit")
    g_common.add_argument("--stacktrace", action="store_true", help=argparse.SUPPRESS)

    return parser


def parse_arguments(argv: Optional[Sequence[str]] = None) -> ConfigNamespace:
    parser = create_parser()
    args = parser.parse_args(argv)
    return ConfigNamespace(**vars(args))


def create_retention(args: ConfigNamespace, logger: Logger) -> Retention:
    policy = PolicyConfig.from_mapping({f"keep-{tier.value}": getattr(args, f"keep_{tier.value}") for tier in Tier})
    return Retention(
        policy,
        grouper=regex_grouper(args.group_compiled) if args.group_compiled is not None else None,
        exclude_pattern=args.exclude_compiled,
        dry_run=args.dry_run,
        logger=logger,
    )


def handle_exception(exception: Exception, exit_code: int, stacktrace: bool, prefix: str = "") -> None:
    if stacktrace:
        traceback.print_exc()
    print(f"[{prefix or LogLevel.ERROR.name}] {exception}", file=sys.stderr)
    sys.exit(exit_code)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args: Optional[ConfigNamespace] = None

    try:
        args = parse_arguments(argv)

        logger = Logger(args.verbose)
        logger.verbose(LogLevel.DEBUG, f"Parsed arguments: {args}")

        result = create_retention(args, logger).apply(args.path)

        if args.json:
            print(json.dumps(result.to_dict(), indent=2))

    except ContractViolationError as e:
        handle_exception(e, 4, args.stacktrace if args is not None else True)
    except UnsafeOperationError as e:
        handle_exception(e, 6, args.stacktrace if args is not None else True)
    except IntegrityCheckFailedError as e:
        handle_exception(e, 7, args.stacktrace if args is not None else True)
    except DisposalError as e:
        handle_exception(e, 8, args.stacktrace if args is not None else True)
    except NothingToKeepError as e:
        handle_exception(e, 3, args.stacktrace if args is not None else True)
    except OSError as e:
        handle_exception(e, 1, args.stacktrace if args is not None else True)
    except ValueError as e:
        handle_exception(e, 2, args.stacktrace if args is not None else True)
    except Exception as e:
        handle_exception(e, 9, args.stacktrace if args is not None else True, prefix="UNEXPECTED ERROR")


if __name__ == "__main__":
    main()
