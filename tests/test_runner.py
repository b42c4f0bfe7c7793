"""
tests/test_runner.py — whole crawls through `CrawlRunner`, with in-memory browsers.
"""
from unittest.mock import MagicMock

import pytest

from crawlflow.config import BrowserConfiguration, CrawlConfiguration
from crawlflow.errors import BrowserError, BrowserUnrecoverableError, ConfigurationError
from crawlflow.exit_notifier import ExitStatus
from crawlflow.plugins import OnNewStatePlugin
from crawlflow.runner import CrawlRunner

from conftest import BASE, FakeBrowser, RecordingPlugin, builder, link, page

SITE = {
    BASE: page("home", link("/a", "a") + link("/b", "b")),
    BASE + "a": page("a", link("/c", "c") + link("/", "home")),
    BASE + "b": page("b", link("/c", "c")),
    BASE + "c": page("c"),
}

CHAIN = {BASE: page("start", link("/0", "next"))}
CHAIN.update({BASE + str(i): page(f"page {i}", link(f"/{i + 1}", "next")) for i in range(50)})


def site_config(*plugins, crawlers=1, pages_builder=None):
    config_builder = pages_builder or builder()
    config_builder.set_unlimited_crawl_depth().set_maximum_run_time(30).set_max_crawlers(crawlers)
    config_builder.add_plugin(*plugins)
    config_builder.crawl_rules().click("a")
    config_builder.crawl_rules().click_once(False)
    return config_builder


def state_urls(session):
    return sorted(v.url for v in session.get_state_flow_graph().all_states())


class StopAtFirstState(OnNewStatePlugin):
    def on_new_state(self, context, vertex):
        context.stop()


class TestCompletedCrawl:
    @pytest.fixture(scope="class")
    def crawl(self):
        recorder = RecordingPlugin()
        browsers = []

        def provider():
            browsers.append(FakeBrowser(SITE))
            return browsers[-1]

        session = CrawlRunner(site_config(recorder).build(), provider).call()
        return session, recorder, browsers

    def test_status(self, crawl):
        session, _, _ = crawl
        assert session.status == ExitStatus.COMPLETED
        assert session.end_time is not None

    def test_every_page_became_a_state(self, crawl):
        session, _, _ = crawl
        graph = session.get_state_flow_graph()
        assert sorted(s.url for s in graph.all_states()) == sorted(SITE)
        assert session.get_initial_state().url == BASE

    def test_edges(self, crawl):
        session, _, _ = crawl
        graph = session.get_state_flow_graph()
        by_id = {s.id: s.url for s in graph.all_states()}
        edges = sorted((by_id[e.source_id], by_id[e.target_id]) for e in graph.all_edges())
        assert edges == sorted(
            [
                (BASE, BASE + "a"),
                (BASE, BASE + "b"),
                (BASE + "a", BASE + "c"),
                (BASE + "a", BASE),
                (BASE + "b", BASE + "c"),
            ]
        )

    def test_plugin_lifecycle(self, crawl):
        session, recorder, browsers = crawl
        assert len(recorder.named("pre_crawling")) == 1
        assert len(recorder.named("on_browser_created")) == 1
        assert recorder.named("post_crawling") == [("post_crawling", session, ExitStatus.COMPLETED)]
        assert recorder.calls[0][0] == "pre_crawling"
        assert recorder.calls[-1][0] == "post_crawling"

    def test_browser_is_closed(self, crawl):
        _, _, browsers = crawl
        assert [b.closed for b in browsers] == [True]

    def test_session_summary(self, crawl):
        session, _, _ = crawl
        summary = session.to_json()
        assert summary["status"] == "completed"
        assert len(summary["states"]) == 4
        assert len(summary["edges"]) == 5
        assert session.crawl_paths


class TestParallelCrawl:
    def test_same_states_as_a_single_crawler(self):
        single = CrawlRunner(site_config().build(), lambda: FakeBrowser(SITE)).call()
        recorder = RecordingPlugin()
        parallel = CrawlRunner(site_config(recorder, crawlers=3).build(), lambda: FakeBrowser(SITE)).call()

        assert parallel.status == ExitStatus.COMPLETED
        assert state_urls(parallel) == state_urls(single)
        assert parallel.get_state_flow_graph().number_of_edges() == single.get_state_flow_graph().number_of_edges()
        assert len(recorder.named("on_browser_created")) == 3
        assert len(recorder.named("post_crawling")) == 1


class TestTermination:
    def test_maximum_states(self):
        config = site_config().set_maximum_states(2).build()
        session = CrawlRunner(config, lambda: FakeBrowser(SITE)).call()
        assert session.status == ExitStatus.MAX_STATES
        assert session.get_state_flow_graph().number_of_states() == 2

    def test_maximum_runtime(self):
        config = site_config().set_maximum_run_time(0.3).build()
        session = CrawlRunner(config, lambda: FakeBrowser(CHAIN, fire_delay=0.05)).call()
        assert session.status == ExitStatus.TIMED_OUT
        assert session.get_state_flow_graph().number_of_states() < len(CHAIN)

    def test_stop_from_a_plugin(self):
        session = CrawlRunner(site_config(StopAtFirstState()).build(), lambda: FakeBrowser(SITE)).call()
        assert session.status == ExitStatus.STOPPED
        assert session.get_state_flow_graph().number_of_states() == 1

    def test_post_crawling_runs_once_whatever_the_reason(self):
        recorder = RecordingPlugin()
        config = site_config(recorder).set_maximum_states(1).build()
        session = CrawlRunner(config, lambda: FakeBrowser(SITE)).call()
        assert recorder.named("post_crawling") == [("post_crawling", session, ExitStatus.MAX_STATES)]


class TestFailures:
    def test_invalid_configuration(self):
        provider = MagicMock()
        recorder = RecordingPlugin()
        session = CrawlRunner(site_config(recorder, pages_builder=builder("ftp://example.com/")), provider).call()
        assert session.status == ExitStatus.CONFIG_ERROR
        assert session.get_state_flow_graph().number_of_states() == 0
        provider.assert_not_called()
        assert recorder.calls == []

    def test_browser_that_cannot_start(self):
        provider = MagicMock(side_effect=ConfigurationError("no such browser"))
        session = CrawlRunner(site_config().build(), provider).call()
        assert session.status == ExitStatus.CONFIG_ERROR

    def test_unreachable_landing_page(self):
        browsers = []

        def provider():
            browsers.append(FakeBrowser(SITE, load_failures=100))
            return browsers[-1]

        session = CrawlRunner(site_config().build(), provider).call()
        assert session.status == ExitStatus.BROWSER_FAILURE
        assert session.get_state_flow_graph().number_of_states() == 0
        assert all(b.closed for b in browsers)

    def test_crashed_browser(self):
        provider = MagicMock(side_effect=BrowserUnrecoverableError("crashed"))
        session = CrawlRunner(site_config().build(), provider).call()
        assert session.status == ExitStatus.BROWSER_FAILURE

    def test_failed_crawler_is_replaced(self):
        browsers = [FakeBrowser(SITE, load_failures=100), FakeBrowser(SITE)]
        config = site_config().replace_failed_crawlers().build()
        session = CrawlRunner(config, lambda: browsers.pop(0)).call()
        assert session.status == ExitStatus.COMPLETED
        assert session.get_state_flow_graph().number_of_states() == 4
        assert browsers == []

    def test_transient_error_loading_the_index_is_retried(self):
        class TimesOutBeforeFirstEvent(FakeBrowser):
            timed_out = False

            def get_dom(self):
                if not self.timed_out and not any(entry[0] == "fire" for entry in self.trace):
                    self.timed_out = True
                    raise BrowserError("transient DOM read timeout")
                return super().get_dom()

        session = CrawlRunner(site_config(crawlers=2).build(), lambda: TimesOutBeforeFirstEvent(SITE)).call()
        assert session.status == ExitStatus.COMPLETED
        assert state_urls(session) == sorted(SITE)

    def test_index_that_cannot_be_read_is_a_browser_failure(self):
        session = CrawlRunner(
            site_config(crawlers=2).build(), lambda: FakeBrowser(SITE, dom_failures=100)
        ).call()
        assert session.status == ExitStatus.BROWSER_FAILURE
        assert session.get_state_flow_graph().number_of_states() == 0

    def test_unexpected_error_in_a_crawler_is_a_browser_failure(self):
        class Broken(FakeBrowser):
            def get_dom(self):
                raise RuntimeError("driver bug")

        session = CrawlRunner(site_config(crawlers=2).build(), lambda: Broken(SITE)).call()
        assert session.status == ExitStatus.BROWSER_FAILURE
        assert session.get_state_flow_graph().number_of_states() == 0

    def test_replacements_stop_when_every_browser_fails(self):
        provider = MagicMock(side_effect=BrowserUnrecoverableError("crashed"))
        retrying = CrawlConfiguration.builder_for(BASE).set_browser_config(
            BrowserConfiguration(url_load_retries=2, retry_backoff_s=0.0)
        )
        config = site_config(pages_builder=retrying).set_unlimited_runtime().replace_failed_crawlers().build()
        session = CrawlRunner(config, provider).call()
        assert session.status == ExitStatus.BROWSER_FAILURE
        assert provider.call_count == 3
