"""
Unit tests for composition planning.
"""

from datetime import date

from slidecast.models import Orientation, ZoomDirection
from slidecast.tasks.composition import format_overlay_date, plan_composition


class TestOverlayDate:
    """Tests for the date badge text."""

    def test_japanese_format(self):
        """ja renders year/month/day with kanji separators."""
        assert format_overlay_date(date(2025, 12, 29), "ja") == "2025年12月29日"

    def test_english_format(self):
        """en renders day, upper-case month abbreviation and year."""
        assert format_overlay_date(date(2025, 12, 29), "en") == "29 DEC 2025"
        assert format_overlay_date(date(2026, 1, 5), "en") == "5 JAN 2026"

    def test_no_zero_padding(self):
        """Single-digit months and days are not padded."""
        assert format_overlay_date(date(2026, 3, 7), "ja") == "2026年3月7日"


class TestPlanComposition:
    """Tests for plan_composition."""

    def test_landscape_plan(self, make_request, settings):
        """Three slides produce three motions, two cross-fades and one audio track."""
        plan = plan_composition(make_request([12000, 15000, 9000]), settings)

        assert (plan.output.width, plan.output.height, plan.output.fps) == (1920, 1080, 25)
        assert len(plan.motions) == 3
        assert [f.offset_sec for f in plan.crossfades] == [12.0, 28.0]
        assert [f.chain_offset_sec for f in plan.crossfades] == [12.0, 27.0]
        assert [m.start_sec for m in plan.motions] == [0.0, 12.0, 27.0]
        assert [(f.from_position, f.to_position) for f in plan.crossfades] == [(0, 1), (1, 2)]
        assert all(f.duration_sec == 1.0 for f in plan.crossfades)
        assert plan.audio.slide_indices == (0, 1, 2)
        assert plan.nominal_duration_sec == 37.0
        assert plan.nominal_duration_ms == 37000

    def test_portrait_resolution(self, make_request, settings):
        """Portrait requests render at 1080x1920."""
        plan = plan_composition(make_request([1000], orientation=Orientation.PORTRAIT), settings)
        assert (plan.output.width, plan.output.height) == (1080, 1920)

    def test_motions_follow_timeline(self, make_request, settings):
        """Each motion carries its slot's frames and zoom bounds."""
        plan = plan_composition(make_request([12000, 15000]), settings)
        first, second = plan.motions

        assert first.frame_count == 325
        assert first.zoom_direction == ZoomDirection.IN
        assert (first.start_zoom, first.end_zoom) == (1.0, 1.2)
        assert second.frame_count == 400
        assert second.zoom_direction == ZoomDirection.OUT
        assert (second.start_zoom, second.end_zoom) == (1.2, 1.0)
        assert first.image_ref == "https://assets.test/slides/0.png"

    def test_audio_follows_slide_order(self, make_request, settings):
        """Audio refs are concatenated in the same order as the video slots."""
        plan = plan_composition(make_request([1000, 2000, 3000]), settings)
        assert plan.audio.audio_refs == tuple(f"https://assets.test/audio/{i}.wav" for i in range(3))

    def test_overlay_uses_settings(self, make_request, settings):
        """Locale, font and size come from settings."""
        english = settings.model_copy(update={"overlay_locale": "en", "overlay_font_size": 48})
        plan = plan_composition(make_request([1000]), english)
        assert plan.overlay.text == "29 DEC 2025"
        assert plan.overlay.locale == "en"
        assert plan.overlay.font_size == 48

    def test_plan_is_deterministic(self, make_request, settings):
        """The same request and settings give equal plans."""
        request = make_request([3000, 4000])
        assert plan_composition(request, settings) == plan_composition(request, settings)

    def test_to_dict_is_json_friendly(self, make_request, settings):
        """Enums are serialized as their values."""
        data = plan_composition(make_request([1000, 1000]), settings).to_dict()
        assert data["motions"][0]["zoom_direction"] == "in"
        assert data["motions"][1]["zoom_direction"] == "out"
        assert data["crossfades"][0]["offset_sec"] == 1.0
