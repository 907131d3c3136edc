"""
Attribute-Based Access Control (ABAC) Engine

Evaluates the ordered rule list of a tenant's policy document.
"""

from datetime import datetime, timezone
from typing import Callable

from src.models.policies import (
    PolicyContext,
    PolicyDocument,
    PolicyEffect,
    PolicyResult,
    PolicyRule,
    PolicySubject,
)


NO_MATCH_REASON = "no ABAC rules matched"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ABACEngine:
    """
    Attribute-Based Access Control Engine.

    A rule applies when its action, resource type, and subject (type and id)
    equal the request's and all of its present conditions hold:
    - tenant: equals the context tenant
    - workspace: equals the context workspace
    - user ids: non-empty list containing the context user id
    - time: current time inside the [start, end] window

    Among applicable rules every deny outranks every allow; within one effect
    the document order is kept. The first rule in that order decides.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the ABAC engine.

        Args:
            clock: Source of the current time for time-window conditions
        """
        self._clock = clock

    def matching_rules(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        document: PolicyDocument,
    ) -> list[PolicyRule]:
        """
        Get the rules applicable to a request, in document order.

        Args:
            subject: The subject being evaluated
            action: Requested action
            resource: Resource type
            context: Request context
            document: The tenant's policy document

        Returns:
            Matching rules
        """
        now = self._clock()
        return [
            rule for rule in document.rules
            if rule.matches(subject, action, resource, context, now)
        ]

    @staticmethod
    def partition(rules: list[PolicyRule]) -> tuple[list[PolicyRule], list[PolicyRule]]:
        """Split rules into (denies, allows), each in original order."""
        denies = [rule for rule in rules if rule.effect == PolicyEffect.DENY]
        allows = [rule for rule in rules if rule.effect == PolicyEffect.ALLOW]
        return denies, allows

    def evaluate(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        document: PolicyDocument,
    ) -> PolicyResult:
        """
        Evaluate the document's rules for a request.

        Returns:
            PolicyResult naming the deciding rule, or "no opinion" when no
            rule applies
        """
        candidates = self.matching_rules(subject, action, resource, context, document)
        denies, allows = self.partition(candidates)

        if denies:
            rule = denies[0]
            return PolicyResult.deny(f"denied by rule {rule.id}", matched_rule_id=rule.id)

        if allows:
            rule = allows[0]
            return PolicyResult.allow(f"allowed by rule {rule.id}", matched_rule_id=rule.id)

        return PolicyResult.no_opinion(NO_MATCH_REASON)
