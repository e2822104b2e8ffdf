"""
Tests for the analytics submission pipeline.

Collaborators are AsyncMocks or the static providers; the store is an
in-memory MetadataStore with consent given.
"""

import asyncio
import json
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from ppa_analytics.eligibility import EligibilityGate, SkipReason
from ppa_analytics.errors import AuthenticationError, ConfigUnavailableError, TransportError
from ppa_analytics.events import Category, SetClientMetadata
from ppa_analytics.exposure_windows import ExposureWindowDeduplicator
from ppa_analytics.merger import MergeContext, merge_client_metadata
from ppa_analytics.models import (
    AgeGroup,
    ClientMetadata,
    FederalState,
    RiskExposureMetadata,
    RiskLevel,
    UserMetadata,
)
from ppa_analytics.payload import PayloadBuilder
from ppa_analytics.providers import (
    AnalyticsConfiguration,
    PPACToken,
    StaticConfigurationProvider,
    StaticTokenProvider,
)
from ppa_analytics.submitter import AnalyticsSubmitter, SubmissionStatus

from conftest import NOW, FixedRandom, make_window


TOKEN = PPACToken(api_token="api-token", device_token="device-token")
CURRENT = RiskExposureMetadata(
    risk_level=RiskLevel.HIGH,
    risk_level_changed_compared_to_previous_submission=True,
    most_recent_date_at_risk_level=date(2021, 6, 12),
)


@pytest.fixture
def transport():
    return AsyncMock()


@pytest.fixture
def make_submitter(store, transport, clock):
    def factory(probability=1.0, draw=0.5, auth=None, configuration_provider=None, **kwargs):
        return AnalyticsSubmitter(
            store,
            configuration_provider=configuration_provider or StaticConfigurationProvider(
                AnalyticsConfiguration(probability_to_submit=probability, etag='"v1"')
            ),
            authentication_provider=auth or StaticTokenProvider(TOKEN),
            transport=transport,
            gate=EligibilityGate(rng=FixedRandom(draw)),
            clock=clock,
            **kwargs,
        )
    return factory


@pytest.fixture
def populated_store(store, clock):
    store.current_risk_exposure_metadata = CURRENT
    store.user_metadata = UserMetadata(FederalState.SAARLAND, 10041000, AgeGroup.AGE_BELOW_29)
    store.last_app_config_etag = '"v1"'
    ExposureWindowDeduplicator(clock=clock).collect(store, [make_window(NOW.date())])
    return store


class TestSubmitData:

    @pytest.mark.asyncio
    async def test_fresh_store_proceeds_past_gate(self, make_submitter, transport):
        outcome = await make_submitter().submit_data()
        assert outcome.status == SubmissionStatus.SUBMITTED
        assert outcome.success
        transport.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_success_rotates_state(self, make_submitter, populated_store, transport):
        outcome = await make_submitter().submit_data()

        assert outcome.success
        assert populated_store.previous_risk_exposure_metadata == CURRENT
        assert populated_store.last_submission_analytics == NOW
        assert populated_store.exposure_windows_metadata.new_exposure_windows_queue == ()
        assert len(populated_store.exposure_windows_metadata.reported_exposure_windows_queue) == 1
        assert json.loads(populated_store.last_submitted_ppa_data) == outcome.payload

    @pytest.mark.asyncio
    async def test_windows_collected_during_request_stay_queued(
        self, make_submitter, populated_store, transport, clock
    ):
        late_window = make_window(NOW.date() - timedelta(days=1), attenuation=70)

        async def submit_and_collect(*args, **kwargs):
            ExposureWindowDeduplicator(clock=clock).collect(populated_store, [late_window])

        transport.submit.side_effect = submit_and_collect

        outcome = await make_submitter().submit_data()

        assert outcome.success
        assert len(outcome.payload["newExposureWindows"]) == 1
        queued = populated_store.exposure_windows_metadata.new_exposure_windows_queue
        assert len(queued) == 1
        assert queued[0].exposure_window == late_window.exposure_window
        assert len(populated_store.exposure_windows_metadata.reported_exposure_windows_queue) == 2

    @pytest.mark.asyncio
    async def test_risk_update_during_request_is_not_rotated(
        self, make_submitter, populated_store, transport
    ):
        updated = RiskExposureMetadata(
            risk_level=RiskLevel.LOW,
            risk_level_changed_compared_to_previous_submission=True,
            most_recent_date_at_risk_level=date(2021, 6, 14),
        )

        async def submit_and_update(*args, **kwargs):
            populated_store.current_risk_exposure_metadata = updated

        transport.submit.side_effect = submit_and_update

        outcome = await make_submitter().submit_data()

        assert outcome.success
        assert populated_store.previous_risk_exposure_metadata == CURRENT
        assert populated_store.current_risk_exposure_metadata == updated

    @pytest.mark.asyncio
    async def test_fetched_etag_is_persisted(self, make_submitter, store):
        provider = StaticConfigurationProvider(
            AnalyticsConfiguration(probability_to_submit=1.0, etag='"v7"')
        )
        await make_submitter(configuration_provider=provider).submit_data()

        assert store.last_app_config_etag == '"v7"'
        result = merge_client_metadata(None, SetClientMetadata(), MergeContext.from_store(store, NOW))
        assert result.value == ClientMetadata(etag='"v7"')

    @pytest.mark.asyncio
    async def test_missing_etag_keeps_stored_one(self, make_submitter, store):
        store.last_app_config_etag = '"v1"'
        provider = StaticConfigurationProvider(AnalyticsConfiguration(probability_to_submit=1.0))
        await make_submitter(configuration_provider=provider).submit_data()
        assert store.last_app_config_etag == '"v1"'

    @pytest.mark.asyncio
    async def test_transport_receives_payload_and_token(self, make_submitter, populated_store, transport):
        await make_submitter().submit_data()

        payload, token = transport.submit.await_args.args
        assert token == TOKEN
        assert payload["userMetadata"]["federalState"] == "FEDERAL_STATE_SL"
        assert len(payload["newExposureWindows"]) == 1
        assert transport.submit.await_args.kwargs == {"force_api_token_header": False}

    @pytest.mark.asyncio
    async def test_force_header_follows_environment(self, make_submitter, transport, monkeypatch):
        monkeypatch.setenv("PPA_FORCE_API_TOKEN_HEADER", "true")
        await make_submitter().submit_data()
        assert transport.submit.await_args.kwargs == {"force_api_token_header": True}

    @pytest.mark.asyncio
    async def test_transport_failure_leaves_state(self, make_submitter, populated_store, transport):
        transport.submit.side_effect = TransportError("bad gateway", status_code=502)
        before = populated_store.backend.snapshot()

        outcome = await make_submitter().submit_data()

        assert outcome.status == SubmissionStatus.TRANSPORT_FAILED
        assert "bad gateway" in outcome.error
        assert populated_store.backend.snapshot() == before
        assert populated_store.previous_risk_exposure_metadata is None
        assert populated_store.last_submission_analytics is None
        assert len(populated_store.exposure_windows_metadata.new_exposure_windows_queue) == 1

    @pytest.mark.asyncio
    async def test_unexpected_transport_exception_is_transport_failure(self, make_submitter, transport):
        transport.submit.side_effect = RuntimeError("socket closed")
        outcome = await make_submitter().submit_data()
        assert outcome.status == SubmissionStatus.TRANSPORT_FAILED

    @pytest.mark.asyncio
    async def test_authentication_failure_is_not_a_skip(self, make_submitter, transport):
        auth = MagicMock()
        auth.acquire_token = AsyncMock(side_effect=AuthenticationError("attestation unavailable"))

        outcome = await make_submitter(auth=auth).submit_data()

        assert outcome.status == SubmissionStatus.AUTHENTICATION_FAILED
        assert outcome.reason is None
        transport.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_config_unavailable(self, make_submitter, transport):
        provider = MagicMock()
        provider.current_configuration = AsyncMock(side_effect=ConfigUnavailableError("offline"))

        outcome = await make_submitter(configuration_provider=provider).submit_data()

        assert outcome.status == SubmissionStatus.CONFIG_UNAVAILABLE
        transport.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_consent_skips_before_fetching_config(self, make_submitter, store, transport):
        store.consent_given = False
        provider = MagicMock()
        provider.current_configuration = AsyncMock()

        outcome = await make_submitter(configuration_provider=provider).submit_data()

        assert outcome.status == SubmissionStatus.SKIPPED
        assert outcome.reason == SkipReason.CONSENT_DENIED
        provider.current_configuration.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited_skip(self, make_submitter, store, transport):
        store.last_submission_analytics = NOW - timedelta(hours=5)
        outcome = await make_submitter().submit_data()
        assert outcome.status == SubmissionStatus.SKIPPED
        assert outcome.reason == SkipReason.RATE_LIMITED
        transport.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sampling_skip(self, make_submitter, transport):
        outcome = await make_submitter(probability=0.1, draw=0.9).submit_data()
        assert outcome.reason == SkipReason.PROBABILITY

    @pytest.mark.asyncio
    async def test_force_ignores_rate_limit(self, make_submitter, store, transport):
        store.last_submission_analytics = NOW - timedelta(hours=1)
        outcome = await make_submitter().submit_data(force=True)
        assert outcome.success

    @pytest.mark.asyncio
    async def test_encoding_failure(self, make_submitter, transport):
        builder = MagicMock()
        builder.build.return_value = {"bad": object()}

        outcome = await make_submitter(payload_builder=builder).submit_data()

        assert outcome.status == SubmissionStatus.ENCODING_FAILED
        transport.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deferred_categories_are_left_out(self, make_submitter, transport):
        builder = PayloadBuilder(deferred_categories=[Category.USER, Category.CLIENT])
        outcome = await make_submitter(payload_builder=builder).submit_data()
        assert "userMetadata" not in outcome.payload
        assert "clientMetadata" not in outcome.payload
        assert "exposureRiskMetadataSet" in outcome.payload


class TestTriggering:

    @pytest.mark.asyncio
    async def test_trigger_inside_loop_schedules_task(self, make_submitter, transport):
        submitter = make_submitter()
        submitter.trigger_submission()
        assert len(submitter._tasks) == 1

        await asyncio.gather(*submitter._tasks)

        transport.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_triggers_coalesce(self, make_submitter, transport):
        release = asyncio.Event()

        async def slow_submit(*args, **kwargs):
            await release.wait()

        transport.submit.side_effect = slow_submit
        submitter = make_submitter()

        first = asyncio.create_task(submitter._submit_guarded())
        await asyncio.sleep(0)
        second = await submitter._submit_guarded()
        release.set()
        outcome = await first

        assert second is None
        assert outcome.success
        assert transport.submit.await_count == 1

    @pytest.mark.asyncio
    async def test_forced_submission_while_busy_is_skipped(self, make_submitter, transport):
        release = asyncio.Event()

        async def slow_submit(*args, **kwargs):
            await release.wait()

        transport.submit.side_effect = slow_submit
        submitter = make_submitter()

        running = asyncio.create_task(submitter._submit_guarded())
        await asyncio.sleep(0)
        forced = await submitter.forced_submission()
        release.set()
        await running

        assert forced.status == SubmissionStatus.SKIPPED
        assert "in progress" in forced.error

    def test_trigger_without_loop_uses_thread(self, make_submitter, monkeypatch):
        submitter = make_submitter()
        started = MagicMock()
        monkeypatch.setattr("ppa_analytics.submitter.threading.Thread", started)

        submitter.trigger_submission()

        started.assert_called_once()
        assert started.call_args.kwargs["daemon"] is True
        started.return_value.start.assert_called_once()

    def test_current_payload_has_every_section(self, make_submitter):
        payload = make_submitter().current_payload()
        assert set(payload) == {
            "exposureRiskMetadataSet",
            "newExposureWindows",
            "testResultMetadataSet",
            "keySubmissionMetadataSet",
            "clientMetadata",
            "userMetadata",
        }
