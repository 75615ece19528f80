"""Per-run state shared by the readers, writers and reconciler of a single conversion."""
import time
import logging

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from blibmsp.modifications import ModificationDatabase
from blibmsp.utils import format_duration, timestamp

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class ModificationSummary:
    """Counts of every modification seen during a run, split by whether it was named.

    Known modifications are keyed by ``(name, mass, site)`` and unknown ones by
    ``(mass, site)``. Masses are rounded to 4 decimal places so that the same
    modification reported with slightly different precision is counted once.
    """

    known: Counter
    unknown: Counter

    def __init__(self):
        self.known = Counter()
        self.unknown = Counter()

    def track(self, mass: float, site: str, name: Optional[str]=None):
        mass = round(float(mass), 4)
        site = site or '?'
        if name:
            self.known[(name, mass, site)] += 1
        else:
            self.unknown[(mass, site)] += 1

    def clear(self):
        self.known.clear()
        self.unknown.clear()

    def __bool__(self):
        return bool(self.known) or bool(self.unknown)

    def known_table(self) -> List[Tuple[str, float, str, int]]:
        return [(name, mass, site, count) for (name, mass, site), count in
                sorted(self.known.items(), key=lambda x: (-x[1], x[0]))]

    def unknown_table(self) -> List[Tuple[float, str, int]]:
        return [(mass, site, count) for (mass, site), count in
                sorted(self.unknown.items(), key=lambda x: (-x[1], x[0]))]

    def report(self) -> List[str]:
        lines = []
        if self.known:
            lines.append("Modifications Found:")
            lines.append(f"  {'Name':<25} {'Mass':>12} {'Site':>6} {'Count':>8}")
            lines.append(f"  {'-' * 25} {'-' * 12} {'-' * 6} {'-' * 8}")
            total = 0
            for name, mass, site, count in self.known_table():
                lines.append(f"  {name:<25} {mass:>12.6f} {site:>6} {count:>8d}")
                total += count
            lines.append(f"  {'-' * 25} {'-' * 12} {'-' * 6} {'-' * 8}")
            lines.append(f"  {'TOTAL':<25} {'':>12} {'':>6} {total:>8d}")
        if self.unknown:
            lines.append("Unknown Modifications (not in Unimod - possibly from open mass search):")
            lines.append(f"  {'Mass':>12} {'Site':>6} {'Count':>8}")
            lines.append(f"  {'-' * 12} {'-' * 6} {'-' * 8}")
            total = 0
            for mass, site, count in self.unknown_table():
                lines.append(f"  {mass:>12.4f} {site:>6} {count:>8d}")
                total += count
            lines.append(f"  {'-' * 12} {'-' * 6} {'-' * 8}")
            lines.append(f"  {'TOTAL':>12} {'':>6} {total:>8d}")
        if not lines:
            lines.append("No modifications found")
        return lines


@dataclass
class ConversionStatistics:
    total: int = 0
    written: int = 0
    skipped: int = 0
    with_proteins: int = 0
    unique_proteins: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def record_proteins(self, accessions: List[str]):
        if accessions:
            self.with_proteins += 1
            if len(accessions) == 1:
                self.unique_proteins += 1

    def finish(self):
        self.end_time = time.time()

    @property
    def elapsed(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "written": self.written,
            "skipped": self.skipped,
            "with_proteins": self.with_proteins,
            "unique_proteins": self.unique_proteins,
        }

    def report(self) -> List[str]:
        lines = [
            f"Total spectra processed: {self.total}",
            f"Spectra written: {self.written}",
            f"Spectra skipped: {self.skipped}",
        ]
        if self.written:
            lines.append(
                f"Spectra with protein mapping: {self.with_proteins} "
                f"({self.with_proteins * 100.0 / self.written:0.1f}%)")
            lines.append(
                f"Spectra mapping to a single protein: {self.unique_proteins} "
                f"({self.unique_proteins * 100.0 / self.written:0.1f}%)")
        return lines


class ConversionContext:
    """Owns everything a conversion accumulates, so that independent runs never share state.

    Attributes
    ----------
    modification_database : ModificationDatabase
        Used to name modifications by mass and find masses by name.
    modification_summary : ModificationSummary
        Tallies of modifications written or read.
    statistics : ConversionStatistics
        Record counters and timing.
    """

    modification_database: ModificationDatabase
    modification_summary: ModificationSummary
    statistics: ConversionStatistics

    def __init__(self, modification_database: Optional[ModificationDatabase]=None):
        if modification_database is None:
            modification_database = ModificationDatabase()
        self.modification_database = modification_database
        self.modification_summary = ModificationSummary()
        self.statistics = ConversionStatistics()

    def reset(self):
        self.modification_summary.clear()
        self.statistics = ConversionStatistics()

    def log_summary(self):
        stats = self.statistics
        if stats.end_time is None:
            stats.finish()
        logger.info("Conversion ended: %s", timestamp(stats.end_time))
        logger.info("Wall clock time: %s", format_duration(stats.elapsed))
        for line in stats.report():
            logger.info(line)
        for line in self.modification_summary.report():
            logger.info(line)
