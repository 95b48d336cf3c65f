import json
from types import SimpleNamespace

import httpx
import pytest
from anthropic import APIConnectionError, APIStatusError, APITimeoutError

from conftest import generation_request
from errors import (
    GeneratorError, GeneratorTimeoutError, InvalidResponseError, TransientServiceError,
)
from generators import AnthropicGenerator, MockGenerator, parse_itinerary

_REQUEST = httpx.Request('POST', 'https://api.anthropic.com/v1/messages')

ITINERARY_JSON = json.dumps({'days': [{
    'day_number': 1,
    'activities': [{
        'name': 'Louvre Museum', 'description': 'Art museum.', 'address': 'Rue de Rivoli, Paris',
        'opening_hours': '09:00-18:00', 'cost': 34, 'activity_order': 1,
    }],
}]})


class FakeMessages:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _client(response=None, error=None):
    return SimpleNamespace(messages=FakeMessages(response, error))


def _message(text, input_tokens=1200, output_tokens=800):
    return SimpleNamespace(
        content=[SimpleNamespace(type='text', text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _status_error(code):
    response = httpx.Response(code, request=_REQUEST)
    return APIStatusError(f'HTTP {code}', response=response, body=None)


# ── Mock generator ────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_mock_covers_every_day_inclusive():
    result = await MockGenerator().generate(generation_request())
    assert result.success
    assert [d.day_number for d in result.data.days] == [1, 2, 3, 4, 5, 6]
    assert all(len(d.activities) == 3 for d in result.data.days)


def test_mock_is_deterministic_and_scales_cost():
    generator = MockGenerator()
    family = generation_request(adults_count=2, children_count=2, travel_style='active')
    first, second = generator.build_itinerary(family), generator.build_itinerary(family)
    assert first == second
    assert len(first.days[0].activities) == 4

    activity = first.days[0].activities[0]
    assert activity.name in {'Eiffel Tower', 'Louvre Museum', 'Arc de Triomphe', 'Notre-Dame Cathedral'}
    solo = generator.build_itinerary(generation_request(adults_count=1, travel_style='active'))
    assert activity.cost == solo.days[0].activities[0].cost * 3


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_parse_itinerary_tolerates_surrounding_prose():
    itinerary = parse_itinerary(f'Here is your plan:\n```json\n{ITINERARY_JSON}\n```')
    assert itinerary.days[0].activities[0].name == 'Louvre Museum'


@pytest.mark.parametrize('text', ['no json here', '{"days": [{"day_number": 0}]}', '{not json}'])
def test_parse_itinerary_rejects_bad_output(text):
    with pytest.raises(InvalidResponseError):
        parse_itinerary(text)


# ── Anthropic generator ───────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_anthropic_success_reports_tokens():
    client = _client(_message(ITINERARY_JSON))
    generator = AnthropicGenerator('sk-test', model='test-model', client=client)

    result = await generator.generate(generation_request())

    assert result.success
    assert result.tokens_used == 2000
    assert client.messages.kwargs['model'] == 'test-model'
    assert 'Paris' in client.messages.kwargs['messages'][0]['content']


@pytest.mark.anyio
@pytest.mark.parametrize('error, expected, retryable', [
    (APITimeoutError(request=_REQUEST), GeneratorTimeoutError, True),
    (APIConnectionError(request=_REQUEST), TransientServiceError, True),
    (_status_error(429), TransientServiceError, True),
    (_status_error(502), TransientServiceError, True),
    (_status_error(400), GeneratorError, False),
])
async def test_anthropic_error_mapping(error, expected, retryable):
    generator = AnthropicGenerator('sk-test', client=_client(error=error))

    with pytest.raises(expected) as excinfo:
        await generator.generate(generation_request())
    assert excinfo.value.retryable is retryable


@pytest.mark.anyio
async def test_anthropic_unparseable_reply_is_not_retryable():
    generator = AnthropicGenerator('sk-test', client=_client(_message('Sorry, I cannot help.')))
    with pytest.raises(InvalidResponseError) as excinfo:
        await generator.generate(generation_request())
    assert not excinfo.value.retryable
