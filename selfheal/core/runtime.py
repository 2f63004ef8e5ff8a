from __future__ import annotations

from dataclasses import dataclass

from selfheal.config.schema import FrameworkConfig
from selfheal.core.actions import SafeActions
from selfheal.core.finder import SafeFinder
from selfheal.core.healer import Healer
from selfheal.core.validator import CandidateValidator
from selfheal.llm.client import create_candidate_generator
from selfheal.logging.audit import HealingAuditLogger
from selfheal.storage.repository import SelectorRepository
from selfheal.utils.dom_extract import DomContextExtractor


@dataclass(slots=True)
class HealingRuntime:
    config: FrameworkConfig
    page: object
    repository: SelectorRepository
    healer: Healer
    finder: SafeFinder
    actions: SafeActions

    def close(self) -> None:
        self.repository.close()


async def create_runtime(config: FrameworkConfig, page, generator=None) -> HealingRuntime:
    """Wires the healing components around one page; the caller owns the result."""

    repository = await SelectorRepository.open(config.database.path)
    if generator is None and config.healing.enabled:
        generator = create_candidate_generator(config.llm, config.context)
    healer = Healer(
        config=config.healing,
        repository=repository,
        generator=generator,
        extractor=DomContextExtractor(config.context),
        validator=CandidateValidator(config.healing.validation_timeout_seconds),
        audit_logger=HealingAuditLogger(),
    )
    finder = SafeFinder(page, healer, repository, config.healing)
    return HealingRuntime(
        config=config,
        page=page,
        repository=repository,
        healer=healer,
        finder=finder,
        actions=SafeActions(page, finder),
    )
