"""
generators.py — Pluggable itinerary generators.

  BaseGenerator       — the call contract: async generate(request) -> GenerationResult
  MockGenerator       — deterministic offline itineraries (development + tests)
  AnthropicGenerator  — Claude via AsyncAnthropic
  create_generator()  — Anthropic when ANTHROPIC_API_KEY is set, mock otherwise

Generators either return a GenerationResult or raise one of the typed errors
from errors.py. TransientServiceError (and subclasses) marks a call as safe
to retry; everything else is final. Retrying, caching and circuit breaking
happen one layer up, in ResilientGenerator.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod

import httpx
from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic
from pydantic import ValidationError as PydanticValidationError

import config
from errors import (
    GeneratorError, GeneratorTimeoutError, InvalidResponseError, TransientServiceError,
    ValidationError,
)
from schemas import GenerationRequest, GenerationResult, Itinerary, ItineraryActivity, ItineraryDay

logger = logging.getLogger(__name__)


class BaseGenerator(ABC):
    model = 'unknown'

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        ...

    @staticmethod
    def validate_request(request: GenerationRequest) -> None:
        if not request.destination or not request.start_date or not request.end_date:
            raise ValidationError('Invalid request parameters: destination and dates are required')
        if request.adults_count <= 0 or request.children_count < 0:
            raise ValidationError('Invalid request parameters: traveller counts out of range')

    @staticmethod
    def itinerary_days(request: GenerationRequest) -> int:
        """Calendar days covered by the trip, both ends included."""
        return max(1, abs((request.end_date - request.start_date).days) + 1)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# ---------------------------------------------------------------------------
# Mock generator
# ---------------------------------------------------------------------------

_ATTRACTIONS = {
    'paris': [
        ('Eiffel Tower', 'Wrought-iron lattice tower on the Champ de Mars, 330 m tall.',
         'Champ de Mars, 5 Avenue Anatole France, 75007 Paris', '09:00-23:45', 26),
        ('Louvre Museum', 'The largest art museum in the world, home of the Mona Lisa.',
         'Rue de Rivoli, 75001 Paris', '09:00-18:00', 17),
        ('Arc de Triomphe', 'Monumental arch honouring those who fought for France.',
         'Place Charles de Gaulle, 75008 Paris', '10:00-23:00', 13),
        ('Notre-Dame Cathedral', 'Medieval Gothic cathedral on the Ile de la Cite.',
         '6 Parvis Notre-Dame - Pl. Jean-Paul II, 75004 Paris', '08:00-18:45', 0),
    ],
    'rome': [
        ('Colosseum', 'Ancient amphitheatre in the centre of the city.',
         'Piazza del Colosseo, 1, 00184 Roma RM, Italy', '08:30-19:00', 16),
        ('Vatican Museums', 'Papal art collections and the Sistine Chapel.',
         'Viale Vaticano, 00165 Roma RM, Italy', '08:00-19:00', 20),
        ('Trevi Fountain', 'Baroque fountain; arrive early to avoid the crowds.',
         'Piazza di Trevi, 00187 Roma RM, Italy', '00:00-23:59', 0),
    ],
}

_DEFAULT_ATTRACTIONS = [
    ('City Museum', 'Regional history and culture across three floors.',
     '1 Main Street', '10:00-18:00', 15),
    ('Central Park', 'Quiet park for a walk and a rest between sights.',
     '5 Park Lane', '06:00-22:00', 0),
    ('Regional Restaurant', 'Local restaurant serving traditional dishes.',
     '10 Market Square', '12:00-22:00', 25),
]

_ACTIVITIES_PER_STYLE = {'active': 4, 'relaxation': 2}


class MockGenerator(BaseGenerator):
    model = 'mock'

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = 0

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        started = time.monotonic()
        self.calls += 1
        self.validate_request(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return GenerationResult(
            success=True,
            data=self.build_itinerary(request),
            processing_time_ms=_elapsed_ms(started),
        )

    def build_itinerary(self, request: GenerationRequest) -> Itinerary:
        destination = request.destination.lower()
        attractions = next(
            (items for city, items in _ATTRACTIONS.items() if city in destination),
            _DEFAULT_ATTRACTIONS,
        )
        per_day = _ACTIVITIES_PER_STYLE.get(request.travel_style or '', 3)

        days = []
        for day in range(1, self.itinerary_days(request) + 1):
            activities = []
            for order in range(1, per_day + 1):
                name, description, address, hours, base_cost = attractions[(day + order) % len(attractions)]
                activities.append(ItineraryActivity(
                    name=name,
                    description=description,
                    address=address,
                    opening_hours=hours,
                    cost=base_cost * request.adults_count + (base_cost * request.children_count) // 2,
                    activity_order=order,
                ))
            days.append(ItineraryDay(day_number=day, activities=activities))
        return Itinerary(days=days)


# ---------------------------------------------------------------------------
# Anthropic generator
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """You are an expert travel planner. Build a realistic day-by-day itinerary:
group nearby attractions, respect opening hours, leave time for meals and travel.

Generate activities for EVERY day of the trip, numbering days from 1.

Respond ONLY with JSON, no markdown, in exactly this shape:
{"days": [{"day_number": 1, "activities": [{"name": "...", "description": "...",
"address": "...", "opening_hours": "HH:MM-HH:MM", "cost": 0, "activity_order": 1}]}]}"""


def build_user_prompt(request: GenerationRequest, days: int) -> str:
    budget = (f'{request.budget_total:g} {request.budget_currency or ""}'.strip()
              if request.budget_total else 'not specified')
    return (
        f'Destination: {request.destination}\n'
        f'Dates: {request.start_date.isoformat()} to {request.end_date.isoformat()} ({days} days)\n'
        f'Travellers: {request.adults_count} adult(s), {request.children_count} child(ren)\n'
        f'Total budget: {budget}\n'
        f'Travel style: {request.travel_style or "flexible"}\n'
        f'Costs are totals for the whole group.'
    )


def parse_itinerary(text: str) -> Itinerary:
    start, end = text.find('{'), text.rfind('}')
    if start == -1 or end <= start:
        raise InvalidResponseError('Generator response did not contain a JSON object')
    try:
        return Itinerary.model_validate(json.loads(text[start:end + 1]))
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise InvalidResponseError(f'Generator response is not a valid itinerary: {exc}') from exc


class AnthropicGenerator(BaseGenerator):
    def __init__(self, api_key: str, model: str = config.GENERATOR_MODEL,
                 timeout: float = config.GENERATOR_ATTEMPT_TIMEOUT_SECONDS,
                 max_tokens: int = config.GENERATOR_MAX_TOKENS,
                 temperature: float = config.GENERATOR_TEMPERATURE,
                 client: AsyncAnthropic | None = None):
        if not api_key and client is None:
            raise ValidationError('Invalid API key')
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        # Retries are owned by ResilientGenerator, so the SDK must not add its own.
        self._client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=httpx.Timeout(timeout, connect=10.0),
            max_retries=0,
        )

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        started = time.monotonic()
        self.validate_request(request)
        days = self.itinerary_days(request)

        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=_SYSTEM_PROMPT,
                messages=[{'role': 'user', 'content': build_user_prompt(request, days)}],
            )
        except APITimeoutError as exc:
            raise GeneratorTimeoutError(f'Generator request timed out after {self.timeout:g}s') from exc
        except APIConnectionError as exc:
            raise TransientServiceError(f'Generator connection failed: {exc}') from exc
        except APIStatusError as exc:
            if exc.status_code == 429 or exc.status_code >= 500:
                raise TransientServiceError(str(exc), status_code=exc.status_code) from exc
            raise GeneratorError(str(exc), status_code=exc.status_code) from exc

        text = ''.join(getattr(block, 'text', '') for block in message.content)
        itinerary = parse_itinerary(text)
        if len(itinerary.days) < days:
            logger.warning('Generator returned %d/%d days for %s', len(itinerary.days), days,
                           request.destination)

        usage = getattr(message, 'usage', None)
        tokens = (usage.input_tokens + usage.output_tokens) if usage else None
        return GenerationResult(
            success=True,
            data=itinerary,
            processing_time_ms=_elapsed_ms(started),
            tokens_used=tokens,
        )


def create_generator() -> BaseGenerator:
    if not config.ANTHROPIC_API_KEY:
        logger.warning('ANTHROPIC_API_KEY not set — using the mock itinerary generator')
        return MockGenerator(delay=config.MOCK_GENERATOR_DELAY_SECONDS)
    return AnthropicGenerator(config.ANTHROPIC_API_KEY)
