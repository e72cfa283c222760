import pytest
from app.models.actions import Action, ActionName, Exchange, PageObservation
from app.workflow.utils import (
    absolute_link,
    backoff_seconds,
    is_checkout_page,
    is_cta_text,
    page_key,
    short_error,
    trim_history,
    url_origin,
)

def exchange(i):
    return Exchange(
        seen=PageObservation(url=f"https://shop.example.com/{i}", screenshot_base64="aW1n"),
        action=Action(name=ActionName.SCROLL_DOCUMENT, args={"direction": "down"}),
        result_url=f"https://shop.example.com/{i}",
    )

@pytest.mark.unit
class TestWorkflowUtils:
    def test_trim_history_keeps_most_recent(self):
        history = [exchange(i) for i in range(15)]
        trimmed = trim_history(history, 10)
        assert len(trimmed) == 10
        assert trimmed[0].result_url.endswith("/5")
        assert trimmed[-1].result_url.endswith("/14")

    def test_trim_history_short_list_untouched(self):
        history = [exchange(i) for i in range(3)]
        assert trim_history(history, 10) == history
        assert trim_history(history, 0) == []

    @pytest.mark.parametrize("url,title", [
        ("https://shop.example.com/checkout", ""),
        ("https://shop.example.com/cart?id=1", ""),
        ("https://pay.example.com/step", "Order Summary"),
        ("https://shop.example.it/pagamento", ""),
    ])
    def test_checkout_pages(self, url, title):
        assert is_checkout_page(url, title)

    def test_landing_page_is_not_checkout(self):
        assert not is_checkout_page("https://shop.example.com/quiz", "Take the quiz")

    def test_backoff_doubles(self):
        assert [backoff_seconds(i, 1.0) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]
        assert backoff_seconds(3, 0) == 0

    def test_short_error(self):
        assert short_error(RuntimeError("first line\nsecond line")) == "first line"
        assert short_error(RuntimeError()) == "RuntimeError"
        assert len(short_error(RuntimeError("x" * 1000))) == 500

@pytest.mark.unit
class TestLinkHelpers:
    def test_page_key_drops_fragment_keeps_query(self):
        assert page_key("https://Shop.example.com/offer?utm=x#top") == "https://shop.example.com/offer?utm=x"
        assert page_key("https://shop.example.com") == "https://shop.example.com/"

    def test_absolute_link(self):
        base = "https://shop.example.com/funnel/step1"
        assert absolute_link("step2", base) == "https://shop.example.com/funnel/step2"
        assert absolute_link("/cart#summary", base) == "https://shop.example.com/cart"
        assert absolute_link("mailto:help@shop.example.com", base) is None
        assert absolute_link("javascript:void(0)", base) is None
        assert absolute_link("", base) is None

    def test_url_origin(self):
        assert url_origin("https://shop.example.com/a/b?c=d") == "https://shop.example.com"
        assert url_origin("http://shop.example.com:8080/") != url_origin("https://shop.example.com/")

    def test_cta_text(self):
        assert is_cta_text("Buy now")
        assert is_cta_text("Terms")
        assert is_cta_text("Click here to claim your discount before the offer runs out today")
        assert not is_cta_text("Read the full story of the people behind every product we make")
        assert not is_cta_text("   ")
