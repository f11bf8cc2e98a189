"""Encounter orchestrator: the bounded generate → validate → repair loop.

Per attempt:
  1. Build the prompt (full brief on attempt 0; brief plus the previous
     validation failures afterwards).
  2. Call the generation service. None means every provider failed:
     raise ServiceUnavailableError, no further attempts.
  3. Parse creature headings from the reply.
  4. Validate against the party and requested tier.
  5. Accept if valid. On the last attempt, also accept a reply with no
     parseable creatures but substantial text, marked unverified.
     Otherwise retry while attempts remain.

When attempts run out the last reply is still returned, marked unvalidated.
Every result carries a validation badge appended to its text.
"""

from __future__ import annotations

import logging

from encounter_forge.extractor import parse_creatures
from encounter_forge.llm import GenerationService
from encounter_forge.models import (
    EncounterRequest,
    EncounterResult,
    GenerationAttempt,
    ProviderLabel,
)
from encounter_forge.party import average_level, compute_thresholds, target_range
from encounter_forge.prompts import PromptConfig, build_prompt
from encounter_forge.validator import validate, validation_badge
from encounter_forge.weaknesses import analyze_party

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_SUBSTANTIVE_CHARS = 500
DEFAULT_TEMPERATURE = 0.8


class ServiceUnavailableError(RuntimeError):
    """Raised when no generation provider could produce a reply."""


async def generate_encounter(
    request: EncounterRequest,
    service: GenerationService,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_substantive_chars: int = DEFAULT_MIN_SUBSTANTIVE_CHARS,
    temperature: float | None = DEFAULT_TEMPERATURE,
) -> EncounterResult:
    """Generate an encounter, regenerating until it validates or attempts run out."""
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    members = request.party_members
    thresholds = compute_thresholds(members)
    config = PromptConfig(
        members=members,
        tier=request.difficulty,
        target=target_range(request.difficulty, thresholds),
        average_level=average_level(members),
        region=request.region,
        tone=request.tone,
        theme=request.theme,
        specific_request=request.specific_request,
        campaign=request.campaign,
        hints=analyze_party(members),
    )

    attempt, provider = await _run_attempt(config, request, service, temperature)
    while True:
        result = attempt.validation_result
        index = attempt.attempt_index
        if result.valid:
            logger.info("encounter validated on attempt %d (adjusted_xp=%d)", index, result.adjusted_xp)
            return _finish(attempt, provider, "validated")

        if index == max_attempts - 1:
            text_len = len(attempt.raw_model_output)
            if not attempt.parsed_creatures and text_len > min_substantive_chars:
                logger.info("accepting unverified encounter: no creatures parsed from %d chars",
                            text_len)
                return _finish(attempt, provider, "unverified")
            logger.info("encounter attempts exhausted; returning unvalidated result")
            return _finish(attempt, provider, "unvalidated")

        logger.warning("encounter attempt %d failed validation: %s", index, ", ".join(result.codes))
        config = config.model_copy(update={
            "previous": result,
            "attempt_index": index + 1,
        })
        attempt, provider = await _run_attempt(config, request, service, temperature)


async def _run_attempt(
    config: PromptConfig,
    request: EncounterRequest,
    service: GenerationService,
    temperature: float | None,
) -> tuple[GenerationAttempt, ProviderLabel]:
    """One generate → parse → validate pass. Raises ServiceUnavailableError on None."""
    prompt = build_prompt(config)
    logger.debug("encounter attempt=%d prompt_len=%d", config.attempt_index, len(prompt.user))
    completion = await service(prompt, temperature)
    if completion is None:
        raise ServiceUnavailableError(
            "No AI providers are available right now. Try again in a few minutes."
        )

    creatures = parse_creatures(completion.text)
    attempt = GenerationAttempt(
        attempt_index=config.attempt_index,
        prompt_text=prompt.user,
        raw_model_output=completion.text,
        parsed_creatures=creatures,
        validation_result=validate(creatures, request.party_members, request.difficulty),
    )
    return attempt, completion.provider


def _finish(attempt: GenerationAttempt, provider: ProviderLabel, status: str) -> EncounterResult:
    validation = attempt.validation_result
    text = attempt.raw_model_output.rstrip() + "\n" + validation_badge(
        validation, unverified=status == "unverified"
    )
    return EncounterResult(
        encounter_text=text,
        validation=validation,
        provider=provider,
        attempt_index=attempt.attempt_index,
        attempts=attempt.attempt_index + 1,
        status=status,
    )
