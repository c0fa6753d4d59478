"""Eligibility check for incoming audit events."""

import logging

logger = logging.getLogger(__name__)


class TargetGate:
    """Admits only events that name a target registered in the store."""

    def __init__(self, target_repository):
        self.target_repository = target_repository

    async def is_eligible(self, target: str) -> bool:
        """
        Decide whether an event for this target should be stored.

        Args:
            target: Target name carried by the event

        Returns:
            False for a blank or unknown target, True otherwise

        Raises:
            RepositoryError: If the store cannot be queried
        """
        if not target or not target.strip():
            logger.debug("Event has no target, skipping")
            return False

        if not await self.target_repository.exists(target):
            logger.debug(f"Target '{target}' is not registered, skipping")
            return False

        return True
