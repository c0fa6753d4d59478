"""
Regex extraction engine.

This module provides:
- Rule application in ascending rule_order
- First-match and all-matches extraction policies
- Required/optional rule handling as a typed outcome
- Time-bounded pattern evaluation via the ``regex`` library
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import regex

from ..config import ExtractionMode
from ..core.events import AuditEvent, ExtractedValue, ExtractionRule, SourceField

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequiredRuleFailed:
    """A required rule produced no match for an event."""
    rule_name: str
    target: str

    def __str__(self) -> str:
        return f"Required rule '{self.rule_name}' failed to match for target '{self.target}'"


@dataclass
class ExtractionOutcome:
    """Result of applying a target's rules to one event."""
    values: List[ExtractedValue] = field(default_factory=list)
    failure: Optional[RequiredRuleFailed] = None

    @property
    def failed(self) -> bool:
        return self.failure is not None


class ExtractionEngine:
    """
    Applies extraction rules to audit events.

    The engine is stateless apart from a compiled-pattern memo, so one
    instance can serve every ingestion loop.
    """

    def __init__(
        self,
        mode: ExtractionMode = ExtractionMode.ALL_MATCHES,
        timeout_seconds: float = 0.1,
    ):
        """
        Initialize the engine.

        Args:
            mode: FIRST_MATCH aggregates one value per rule name,
                ALL_MATCHES emits one value per match occurrence
            timeout_seconds: Time limit for evaluating one pattern
        """
        self.mode = mode
        self.timeout_seconds = timeout_seconds
        self._compiled: Dict[str, regex.Pattern] = {}

    def apply(self, event: AuditEvent, rules: List[ExtractionRule]) -> ExtractionOutcome:
        """
        Apply rules to an event.

        Rules run in ascending rule_order. A rule whose source value is
        empty is skipped, even when required. A required rule that does
        not match ends extraction with a failure and no values.

        Args:
            event: Decoded audit event
            rules: Rules of the event's target

        Returns:
            ExtractionOutcome with the extracted values, or with the
            failing required rule
        """
        aggregated: Dict[str, ExtractedValue] = {}
        values: List[ExtractedValue] = []

        for rule in sorted(rules, key=lambda r: r.rule_order):
            source_field = SourceField.lookup(rule.source_field)
            source_value = source_field.read(event) if source_field else None

            if not source_value:
                logger.debug(
                    f"Source field '{rule.source_field}' is empty for rule '{rule.rule_name}'"
                )
                continue

            matches = self._evaluate(rule, source_value, event.id)

            if not matches:
                if rule.is_required:
                    failure = RequiredRuleFailed(rule_name=rule.rule_name, target=event.target)
                    logger.warning(f"{failure} (event {event.id})")
                    return ExtractionOutcome(failure=failure)
                logger.debug(f"Optional rule '{rule.rule_name}' did not match")
                continue

            if self.mode == ExtractionMode.FIRST_MATCH:
                aggregated[rule.rule_name] = self._to_value(rule, matches[0])
            else:
                values.extend(self._to_value(rule, match) for match in matches)

        if self.mode == ExtractionMode.FIRST_MATCH:
            values = list(aggregated.values())

        logger.debug(f"Extracted {len(values)} value(s) from event {event.id}")
        return ExtractionOutcome(values=values)

    def _evaluate(self, rule: ExtractionRule, text: str, event_id: str) -> list:
        """Run a rule's pattern; timeouts and invalid patterns count as no match."""
        pattern = self._compile(rule)
        if pattern is None:
            return []

        try:
            if self.mode == ExtractionMode.FIRST_MATCH:
                match = pattern.search(text, timeout=self.timeout_seconds)
                return [match] if match else []
            return list(pattern.finditer(text, timeout=self.timeout_seconds))
        except TimeoutError:
            logger.warning(
                f"Regex timeout for rule '{rule.rule_name}' on event {event_id} "
                f"(limit {self.timeout_seconds * 1000:.0f}ms)"
            )
            return []

    def _compile(self, rule: ExtractionRule) -> Optional[regex.Pattern]:
        pattern = self._compiled.get(rule.regex_pattern)
        if pattern is not None:
            return pattern

        try:
            pattern = regex.compile(rule.regex_pattern)
        except regex.error as e:
            logger.error(f"Invalid pattern for rule '{rule.rule_name}': {e}")
            return None

        self._compiled[rule.regex_pattern] = pattern
        return pattern

    @staticmethod
    def _to_value(rule: ExtractionRule, match) -> ExtractedValue:
        # First capturing group when the pattern has one, else the whole match
        if match.re.groups > 0:
            text = match.group(1) or ""
        else:
            text = match.group(0)

        return ExtractedValue(
            rule_id=rule.id,
            rule_name=rule.rule_name,
            regex_pattern=rule.regex_pattern,
            source_field=rule.source_field,
            value=text,
        )
