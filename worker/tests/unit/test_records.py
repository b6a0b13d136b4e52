"""
Unit tests for the render/publish status machines and asset records.
"""

import pytest

from slidecast.records import (
    ASSET_RENDERED_VIDEO,
    PUBLISH_BLOCKED,
    PUBLISH_ERROR,
    PUBLISH_PENDING,
    PUBLISH_PROCESSING,
    PUBLISH_UPLOADED,
    PUBLISH_UPLOADING,
    RENDER_ERROR,
    RENDER_PENDING,
    RENDER_RENDERED,
    RENDER_RENDERING,
    InvalidTransition,
    Video,
    VideoAsset,
    assets_of_type,
    replace_rendered_asset,
    set_publish_status,
    set_render_status,
)


class TestRenderStatus:
    """Tests for set_render_status."""

    def test_happy_path(self):
        video = Video(id=1, render_status=RENDER_PENDING)
        set_render_status(video, RENDER_RENDERING)
        assert video.render_started_at is not None
        set_render_status(video, RENDER_RENDERED)
        assert video.render_completed_at is not None
        assert video.render_error is None

    def test_error_keeps_message(self):
        video = Video(id=1, render_status=RENDER_RENDERING)
        set_render_status(video, RENDER_ERROR, "x" * 5000)
        assert video.render_status == RENDER_ERROR
        assert len(video.render_error) == 2000

    def test_rerender_from_error(self):
        video = Video(id=1, render_status=RENDER_ERROR, render_error="boom")
        set_render_status(video, RENDER_RENDERING)
        assert video.render_error is None

    def test_cannot_skip_rendering(self):
        video = Video(id=1, render_status=RENDER_PENDING)
        with pytest.raises(InvalidTransition):
            set_render_status(video, RENDER_RENDERED)

    def test_redelivered_job_reenters_rendering(self):
        video = Video(id=1, render_status=RENDER_RENDERING)
        set_render_status(video, RENDER_RENDERING)
        assert video.render_status == RENDER_RENDERING


class TestPublishStatus:
    """Tests for set_publish_status."""

    def test_happy_path(self):
        video = Video(id=1, youtube_upload_status=None)
        for status in (PUBLISH_UPLOADING, PUBLISH_PROCESSING, PUBLISH_UPLOADED):
            set_publish_status(video, status)
        assert video.youtube_upload_status == PUBLISH_UPLOADED
        assert video.youtube_upload_error is None

    def test_blocked_records_reason(self):
        video = Video(id=1)
        set_publish_status(video, PUBLISH_BLOCKED, "policy: violence")
        assert video.youtube_upload_error == "policy: violence"

    def test_error_from_processing(self):
        video = Video(id=1, youtube_upload_status=PUBLISH_PROCESSING)
        set_publish_status(video, PUBLISH_ERROR, "rejected")
        assert video.youtube_upload_status == PUBLISH_ERROR

    def test_rerender_resets_upload_in_flight(self):
        for status in (PUBLISH_UPLOADING, PUBLISH_PROCESSING):
            video = Video(id=1, youtube_upload_status=status)
            set_publish_status(video, PUBLISH_PENDING)
            assert video.youtube_upload_status == PUBLISH_PENDING

    def test_uploaded_is_terminal_for_processing(self):
        video = Video(id=1, youtube_upload_status=PUBLISH_UPLOADED)
        with pytest.raises(InvalidTransition):
            set_publish_status(video, PUBLISH_PROCESSING)


class TestRenderedAsset:
    """Tests for replace_rendered_asset."""

    def test_replaces_previous_render(self, db_session):
        video = Video(video_type="short")
        db_session.add(video)
        db_session.flush()
        replace_rendered_asset(db_session, video.id, "videos/old.mp4", "video/mp4", 10, {}, None)
        db_session.flush()

        replace_rendered_asset(
            db_session, video.id, "videos/new.mp4", "video/mp4", 20, {"durationMs": 37040}, "https://cdn.test/new"
        )
        db_session.commit()

        assets = assets_of_type(db_session, video.id, ASSET_RENDERED_VIDEO)
        assert [a.r2_key for a in assets] == ["videos/new.mp4"]
        assert assets[0].meta == {"durationMs": 37040}
        assert assets[0].file_size == 20

    def test_meta_accepts_legacy_text(self):
        assert VideoAsset(asset_metadata='{"a": 1}').meta == {"a": 1}
        assert VideoAsset(asset_metadata="not json").meta == {}
