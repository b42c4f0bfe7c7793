"""
tests/test_extractor.py — applying crawl rules to a page.
"""
import pytest

from crawlflow.conditions import RegexCondition, UrlCondition
from crawlflow.elements import EventType, How, Identification, InputType
from crawlflow.extractor import CandidateElementExtractor
from crawlflow.rules import CrawlRulesBuilder
from crawlflow.state import StateVertex

from conftest import BASE, FakeBrowser, link, page

STATE = StateVertex(id=0, name="index")


def extract(body, rules, url=BASE, frames=None):
    browser = FakeBrowser({url: page("test", body)}, frames=frames)
    browser.go_to_url(url)
    return CandidateElementExtractor(browser, rules.build(), BASE).extract(STATE)


def texts(candidates):
    return [c.text for c in candidates]


class TestIncludeExclude:
    def test_included_tags_in_document_order(self):
        rules = CrawlRulesBuilder()
        rules.click("a")
        rules.click("button")
        body = link("/1", "one") + "<button>two</button>" + link("/3", "three") + "<span>no</span>"
        assert texts(extract(body, rules)) == ["one", "two", "three"]

    def test_nothing_without_include_rules(self):
        assert extract(link("/1", "one"), CrawlRulesBuilder()) == []

    def test_exclusion_wins_over_inclusion(self):
        rules = CrawlRulesBuilder()
        rules.click("a")
        rules.dont_click("a").with_text("Logout")
        body = link("/1", "Home") + link("/logout", "Logout")
        assert texts(extract(body, rules)) == ["Home"]

    def test_text_and_attribute_filters(self):
        rules = CrawlRulesBuilder()
        rules.click("div").with_text("CLICK_ME")
        rules.click("span").with_attribute("class", "go")
        body = (
            "<div>CLICK_ME</div><div>other</div>"
            '<span class="go">yes</span><span class="stop">no</span>'
        )
        assert texts(extract(body, rules)) == ["CLICK_ME", "yes"]

    def test_exclude_under_xpath(self):
        rules = CrawlRulesBuilder()
        rules.click("a")
        rules.dont_click("a").under_xpath("//DIV[@id='DONT_CLICK_IN_HERE']")
        body = (
            '<div id="DONT_CLICK_IN_HERE">' + link("/x", "inside") + "</div>" + link("/y", "outside")
        )
        assert texts(extract(body, rules)) == ["outside"]

    def test_include_under_xpath(self):
        rules = CrawlRulesBuilder()
        rules.click("a").under_xpath("//nav")
        body = "<nav>" + link("/x", "menu") + "</nav>" + link("/y", "content")
        assert texts(extract(body, rules)) == ["menu"]

    def test_rule_with_invalid_xpath_is_dropped(self):
        rules = CrawlRulesBuilder()
        rules.click("a").under_xpath("//div[")
        rules.click("button")
        body = link("/x", "link") + "<button>ok</button>"
        assert texts(extract(body, rules)) == ["ok"]

    def test_candidates_carry_element_details(self):
        rules = CrawlRulesBuilder()
        rules.click("button").with_event(EventType.HOVER)
        (found,) = extract('<button id="b1" class="x">Go</button>', rules)
        assert found.identification.how == How.XPATH
        assert found.identification.value == "/html/body/button"
        assert found.event_type == EventType.HOVER
        assert found.tag == "button"
        assert found.attribute_map == {"class": "x", "id": "b1"}
        assert found.related_frame == ""


class TestConditions:
    def test_rule_applies_only_when_its_condition_holds(self):
        rules = CrawlRulesBuilder()
        rules.click("a").when(UrlCondition("admin"))
        rules.click("button")
        body = link("/x", "link") + "<button>ok</button>"
        assert texts(extract(body, rules)) == ["ok"]
        assert texts(extract(body, rules, url=BASE + "admin")) == ["link", "ok"]

    def test_exclusion_with_condition(self):
        rules = CrawlRulesBuilder()
        rules.click("a")
        rules.dont_click("a").when(RegexCondition("read-only"))
        assert texts(extract(link("/x", "edit"), rules)) == ["edit"]
        assert extract("<p>read-only</p>" + link("/x", "edit"), rules) == []

    def test_crawl_condition(self):
        rules = CrawlRulesBuilder()
        rules.add_crawl_condition("no logout page", RegexCondition("Logged in"))
        browser = FakeBrowser({BASE: page("home"), BASE + "in": page("Logged in")})
        extractor = CandidateElementExtractor(browser, rules.build(), BASE)
        browser.go_to_url(BASE)
        assert not extractor.check_crawl_condition()
        browser.go_to_url(BASE + "in")
        assert extractor.check_crawl_condition()

    def test_crawl_condition_applies_only_with_its_preconditions(self):
        rules = CrawlRulesBuilder()
        rules.add_crawl_condition("never", RegexCondition("NOPE"), UrlCondition("private"))
        browser = FakeBrowser({BASE: page("home"), BASE + "private": page("secret")})
        extractor = CandidateElementExtractor(browser, rules.build(), BASE)
        browser.go_to_url(BASE)
        assert extractor.check_crawl_condition()
        browser.go_to_url(BASE + "private")
        assert not extractor.check_crawl_condition()


class TestAnchors:
    def _rules(self, **flags):
        rules = CrawlRulesBuilder()
        rules.click("a")
        for name, value in flags.items():
            getattr(rules, name)(value)
        return rules

    def test_mail_and_phone_links_are_skipped(self):
        body = link("mailto:a@b.c", "mail") + link("tel:123", "call") + link("/x", "page")
        assert texts(extract(body, self._rules())) == ["page"]

    def test_external_links_are_skipped_by_default(self):
        body = link("http://elsewhere.org/", "out") + link("/x", "in")
        assert texts(extract(body, self._rules())) == ["in"]
        assert texts(extract(body, self._rules(follow_external_links=True))) == ["out", "in"]

    def test_hidden_anchors(self):
        body = '<div style="display: none">' + link("/x", "hidden") + "</div>" + link("/y", "shown")
        assert texts(extract(body, self._rules())) == ["shown"]
        assert texts(extract(body, self._rules(crawl_hidden_anchors=True))) == ["hidden", "shown"]


class TestFrames:
    FRAMES = {
        (BASE, "menu"): page("menu", link("/m", "in menu") + '<iframe name="inner"></iframe>'),
        (BASE, "menu.inner"): page("inner", link("/i", "nested")),
        (BASE, "ads"): page("ads", link("/ad", "advert")),
    }
    BODY = link("/top", "top") + '<iframe name="menu"></iframe><iframe id="ads"></iframe>'

    def _rules(self):
        rules = CrawlRulesBuilder()
        rules.click("a")
        return rules

    def test_frames_are_crawled_recursively(self):
        found = extract(self.BODY, self._rules(), frames=self.FRAMES)
        assert [(c.text, c.related_frame) for c in found] == [
            ("top", ""),
            ("in menu", "menu"),
            ("nested", "menu.inner"),
            ("advert", "ads"),
        ]

    def test_ignored_frames_are_skipped(self):
        rules = self._rules().dont_crawl_frame("ad%")
        assert texts(extract(self.BODY, rules, frames=self.FRAMES)) == ["top", "in menu", "nested"]

    def test_frames_can_be_switched_off(self):
        rules = self._rules().crawl_frames(False)
        assert texts(extract(self.BODY, rules, frames=self.FRAMES)) == ["top"]

    def test_unreadable_frame_is_skipped(self):
        frames = {k: v for k, v in self.FRAMES.items() if k[1] != "ads"}
        assert "advert" not in texts(extract(self.BODY, self._rules(), frames=frames))


class TestForms:
    BODY = (
        "<form>"
        '<input type="text" name="email">'
        '<input type="checkbox" id="agree">'
        '<select name="country"><option value="nl">NL</option><option value="be">BE</option></select>'
        '<input type="hidden" name="csrf" value="x">'
        '<button type="submit">Send</button>'
        "</form>"
    )

    def test_form_inputs_are_attached_to_the_candidate(self):
        rules = CrawlRulesBuilder()
        rules.click("button")
        (found,) = extract(self.BODY, rules)
        by_id = {f.identification: f for f in found.form_inputs}
        assert by_id[Identification(How.NAME, "email")].values == ("test@example.com",)
        assert by_id[Identification(How.ID, "agree")].input_type == InputType.CHECKBOX
        assert by_id[Identification(How.NAME, "country")].values == ("nl",)
        assert Identification(How.NAME, "csrf") not in by_id

    def test_configured_values_win(self):
        rules = CrawlRulesBuilder()
        rules.click("button")
        rules.input_value(Identification(How.NAME, "email"), "me@example.org")
        (found,) = extract(self.BODY, rules)
        by_id = {f.identification: f for f in found.form_inputs}
        assert by_id[Identification(How.NAME, "email")].values == ("me@example.org",)

    @pytest.mark.parametrize("body", ["<button>Alone</button>", "<div><button>Alone</button></div>"])
    def test_no_form_no_inputs(self, body):
        rules = CrawlRulesBuilder()
        rules.click("button")
        (found,) = extract(body, rules)
        assert found.form_inputs == ()
