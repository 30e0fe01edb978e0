import pytest

from airchives.core.exceptions import InvalidStatusTransitionError
from airchives.engines.garment.intake import IntakeOutcome
from airchives.engines.garment.schemas import DetectionResult, SegmentationResult
from airchives.modules.garments.models import Garment, GarmentStatus
from airchives.modules.generations.models import Generation, GenerationStatus
from airchives.modules.generations.repositories import GenerationRepository


def new_generation() -> Generation:
    return Generation(garment_id="g-1", target_model_id="sienna_01")


def test_generation_happy_path():
    generation = new_generation()
    assert generation.status == GenerationStatus.PENDING.value
    assert generation.progress == 0

    generation.mark_processing(provider="fal")
    assert generation.progress == 50
    assert generation.provider == "fal"
    assert generation.started_at is not None

    generation.mark_completed()
    assert generation.progress == 100
    assert generation.is_terminal
    assert generation.completed_at is not None


def test_pending_can_fail_directly():
    generation = new_generation()
    generation.mark_failed("No inference provider configured")

    assert generation.status == GenerationStatus.FAILED.value
    assert generation.error_message == "No inference provider configured"
    assert generation.progress == 0


def test_failed_always_has_a_message():
    generation = new_generation()
    generation.mark_failed("")
    assert generation.error_message


@pytest.mark.parametrize("terminal", ["mark_completed", "mark_failed"])
def test_terminal_states_are_final(terminal):
    generation = new_generation()
    generation.mark_processing()
    if terminal == "mark_failed":
        generation.mark_failed("boom")
    else:
        generation.mark_completed()

    with pytest.raises(InvalidStatusTransitionError):
        generation.mark_processing()
    with pytest.raises(InvalidStatusTransitionError):
        generation.mark_failed("again")


def test_cannot_complete_from_pending():
    with pytest.raises(InvalidStatusTransitionError):
        new_generation().mark_completed()


def test_status_dict_is_lower_case():
    generation = new_generation()
    generation.mark_processing()
    assert generation.to_status_dict([])["status"] == "processing"


def test_garment_intake_applies_once():
    garment = Garment(owner_id="anonymous", original_image_url="http://test/a.png")
    outcome = IntakeOutcome(
        detection=DetectionResult(category="bottom", confidence=0.8),
        segmentation=SegmentationResult(mask_url="https://fal.test/m.png", confidence=0.9, garment_detected=True)
    )

    garment.apply_intake(outcome)

    assert garment.status == GarmentStatus.SEGMENTED.value
    assert garment.category == "BOTTOM"
    assert garment.mask_image_url == "https://fal.test/m.png"
    assert garment.is_ready_for_generation
    with pytest.raises(InvalidStatusTransitionError):
        garment.apply_intake(outcome)


def test_failed_intake_records_error_without_mask():
    garment = Garment(owner_id="anonymous", original_image_url="http://test/a.png")
    outcome = IntakeOutcome(
        detection=DetectionResult(category="top", confidence=0.5, is_fallback=True),
        error="Segmentation timed out after 30s"
    )

    garment.apply_intake(outcome)

    assert garment.status == GarmentStatus.FAILED.value
    assert garment.mask_image_url is None
    assert garment.error_message == "Segmentation timed out after 30s"
    assert not garment.is_ready_for_generation


# =============================================================================
# Persistence
# =============================================================================

@pytest.mark.asyncio
async def test_claim_pending_succeeds_once(session_maker, segmented_garment):
    async with session_maker() as session:
        repo = GenerationRepository(session)
        generation = await repo.create(Generation(garment_id=segmented_garment.id, target_model_id="sienna_01"))

        first = await repo.claim_pending(generation.id)
        second = await repo.claim_pending(generation.id)
        missing = await repo.claim_pending("missing")

    assert (first, second, missing) == (True, False, False)
    async with session_maker() as session:
        claimed = await GenerationRepository(session).get(generation.id)
    assert claimed.status == GenerationStatus.PROCESSING.value
    assert claimed.started_at is not None
    assert claimed.provider is None


@pytest.mark.asyncio
async def test_timestamps_round_trip_as_naive_utc(session_maker, segmented_garment):
    async with session_maker() as session:
        generation = await GenerationRepository(session).create(
            Generation(garment_id=segmented_garment.id, target_model_id="sienna_01")
        )

    async with session_maker() as session:
        stored = await GenerationRepository(session).get(generation.id)

    assert stored.created_at.tzinfo is None
    assert stored.created_at == generation.created_at
