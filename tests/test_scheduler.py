import threading

import pytest

from search_crawler.crawler.errors import InputError, SnapshotError
from search_crawler.crawler.normalizer import URLNormalizer
from search_crawler.crawler.scheduler import CrawlerScheduler, CrawlStats, read_seed_file
from search_crawler.storage.sinks import MemoryPageSink, PageSink, StorageError
from search_crawler.storage.snapshot import SnapshotStore


def run_crawl(config, fetcher, seeds, sink=None):
    sink = sink or MemoryPageSink()
    scheduler = CrawlerScheduler(config, fetcher=fetcher, sink=sink)
    scheduler.initialize(seeds)
    scheduler.start_crawling()
    scheduler.close()
    return scheduler, sink


class FailingSink(PageSink):
    def __init__(self, fail_url):
        self.fail_url = fail_url
        self.stored = []

    def store(self, page):
        if page.url == self.fail_url:
            raise StorageError(f"disk full while storing {page.url}")
        self.stored.append(page.url)


class TestCrawlScenarios:
    def test_robots_disallowed_pages_never_fetched(self, crawl_config, make_fetcher):
        fetcher = make_fetcher(
            pages={
                'https://a.test/': '<html><body><a href="/ok">ok</a>'
                                   '<a href="/private/x">secret</a></body></html>',
                'https://a.test/ok': '<html><body><p>fine</p></body></html>',
                'https://a.test/private/x': '<html><body><p>secret</p></body></html>',
                'https://b.test/': '<html><body><p>other host</p></body></html>',
            },
            robots={'a.test': (200, 'User-agent: *\nDisallow: /private/\n')}
        )

        scheduler, sink = run_crawl(crawl_config, fetcher, ['https://a.test/', 'https://b.test/'])

        assert sorted(sink.urls()) == ['https://a.test/', 'https://a.test/ok', 'https://b.test/']
        assert fetcher.fetch_count('https://a.test/private/x') == 0
        assert not scheduler.frontier.is_visited('https://a.test/private/x')

    def test_host_cap(self, crawl_config, make_fetcher):
        crawl_config.crawler.max_per_host = 2
        seeds = [f'http://x.test/{i}' for i in range(5)]
        fetcher = make_fetcher(pages={url: '<html><body>page</body></html>' for url in seeds})

        scheduler, sink = run_crawl(crawl_config, fetcher, seeds)

        assert len(sink.urls()) == 2
        assert scheduler.frontier.host_count('x.test') == 2

    def test_page_cap(self, crawl_config, make_fetcher):
        crawl_config.crawler.max_pages = 3
        links = ''.join(f'<a href="/p{i}">p</a>' for i in range(10))
        pages = {f'http://a.test/p{i}': f'<html><body>{links}</body></html>' for i in range(10)}
        pages['http://a.test/'] = f'<html><body>{links}</body></html>'
        fetcher = make_fetcher(pages=pages)

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/'])

        assert len(sink.urls()) == 3
        assert scheduler.frontier.cap_reached()

    def test_server_error_retracts_budget(self, crawl_config, make_fetcher):
        fetcher = make_fetcher(pages={'http://a.test/u': (503, 'busy')})

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/u'])

        assert sink.urls() == []
        assert scheduler.frontier.host_count('a.test') == 0
        assert scheduler.frontier.page_counter == 0
        assert scheduler.frontier.is_visited('http://a.test/u')
        assert fetcher.fetch_count('http://a.test/u') == 1
        assert scheduler.stats.errors == 1

    def test_no_duplicate_fetch(self, crawl_config, make_fetcher):
        crawl_config.crawler.threads = 4
        crawl_config.crawler.max_pages = 50
        crawl_config.crawler.max_per_host = 50
        links = ''.join(f'<a href="/p{i}">p</a>' for i in range(20))
        pages = {f'http://a.test/p{i}': f'<html><body>{links}</body></html>' for i in range(20)}
        fetcher = make_fetcher(pages=pages)

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/p0'])

        assert sorted(fetcher.fetched) == sorted(set(fetcher.fetched))
        assert len(sink.urls()) == 20

    def test_redirect_to_visited_url_is_duplicate(self, crawl_config, make_fetcher):
        crawl_config.crawler.threads = 1
        fetcher = make_fetcher(
            pages={'http://a.test/': '<html><body>home</body></html>'},
            redirects={'http://a.test/old': 'http://a.test/'}
        )

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/', 'http://a.test/old'])

        assert sink.urls() == ['http://a.test/']
        assert scheduler.stats.duplicates_skipped == 1
        assert scheduler.frontier.host_count('a.test') == 1

    def test_redirect_target_filed_under_final_url(self, crawl_config, make_fetcher):
        fetcher = make_fetcher(
            pages={'http://a.test/new': '<html><body>moved</body></html>'},
            redirects={'http://a.test/old': 'http://a.test/NEW'}
        )
        fetcher.pages['http://a.test/NEW'] = fetcher.pages['http://a.test/new']

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/old'])

        assert sink.urls() == ['http://a.test/new']
        assert scheduler.frontier.is_visited('http://a.test/new')

    def test_cross_host_redirect_respects_target_host_cap(self, crawl_config, make_fetcher):
        crawl_config.crawler.threads = 1
        crawl_config.crawler.max_per_host = 1
        page = '<html><body>b page</body></html>'
        fetcher = make_fetcher(
            pages={'http://b.test/0': page, 'http://b.test/1': page, 'http://b.test/2': page},
            redirects={'http://a.test/x': 'http://b.test/1', 'http://c.test/y': 'http://b.test/2'}
        )

        scheduler, sink = run_crawl(crawl_config, fetcher,
                                    ['http://b.test/0', 'http://a.test/x', 'http://c.test/y'])

        assert sink.urls() == ['http://b.test/0']
        assert scheduler.frontier.host_count('b.test') == 1
        assert scheduler.frontier.host_count('a.test') == 0
        assert scheduler.frontier.host_count('c.test') == 0

    def test_cross_host_redirect_frees_origin_host_budget(self, crawl_config, make_fetcher):
        crawl_config.crawler.threads = 1
        crawl_config.crawler.max_per_host = 1
        fetcher = make_fetcher(
            pages={
                'http://b.test/1': '<html><body><a href="http://a.test/y">y</a></body></html>',
                'http://a.test/y': '<html><body>y</body></html>',
            },
            redirects={'http://a.test/x': 'http://b.test/1'}
        )

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/x'])

        assert sink.urls() == ['http://b.test/1', 'http://a.test/y']
        assert scheduler.frontier.host_count('a.test') == 1
        assert scheduler.frontier.host_count('b.test') == 1

    def test_sink_failure_retracts(self, crawl_config, make_fetcher):
        crawl_config.crawler.threads = 1
        fetcher = make_fetcher(pages={
            'http://a.test/1': '<html><body>one</body></html>',
            'http://a.test/2': '<html><body>two</body></html>',
        })
        sink = FailingSink('http://a.test/1')

        scheduler, _ = run_crawl(crawl_config, fetcher, ['http://a.test/1', 'http://a.test/2'], sink)

        assert sink.stored == ['http://a.test/2']
        assert scheduler.frontier.host_count('a.test') == 1

    def test_robots_denied_seed_retracted(self, crawl_config, make_fetcher):
        fetcher = make_fetcher(
            pages={'http://a.test/': '<html><body>home</body></html>'},
            robots={'a.test': (200, 'User-agent: *\nDisallow: /\n')}
        )

        scheduler, sink = run_crawl(crawl_config, fetcher, ['http://a.test/'])

        assert sink.urls() == []
        assert fetcher.fetched == []
        assert scheduler.frontier.page_counter == 0
        assert scheduler.stats.robots_denied == 1


class TestLifecycle:
    def test_final_snapshot_and_restart(self, crawl_config, make_fetcher):
        crawl_config.crawler.max_pages = 2
        links = '<a href="/a">a</a><a href="/b">b</a><a href="/c">c</a>'
        fetcher = make_fetcher(pages={
            'http://a.test/': f'<html><body>{links}</body></html>',
            'http://a.test/a': '<html><body>a</body></html>',
        })
        crawl_config.crawler.threads = 1

        first, _ = run_crawl(crawl_config, fetcher, ['http://a.test/'])
        pending, visited = first.frontier.snapshot()

        store = SnapshotStore(crawl_config.snapshot.directory)
        assert store.load() == (pending, visited)

        second = CrawlerScheduler(crawl_config, fetcher=fetcher, sink=MemoryPageSink())
        second.initialize([])
        assert second.frontier.snapshot() == (pending, visited)
        second.close()

    def test_stop_crawling(self, crawl_config, make_fetcher):
        crawl_config.crawler.poll_wait_ms = 5000
        scheduler = CrawlerScheduler(crawl_config, fetcher=make_fetcher(), sink=MemoryPageSink())
        scheduler.initialize([])

        runner = threading.Thread(target=scheduler.start_crawling)
        runner.start()
        scheduler.stop_crawling()
        runner.join(timeout=5.0)

        assert not runner.is_alive()
        assert not scheduler.is_running
        scheduler.close()

    def test_unwritable_snapshot_directory(self, crawl_config, make_fetcher, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('file')
        crawl_config.snapshot.directory = str(blocker / 'snapshot')
        scheduler = CrawlerScheduler(crawl_config, fetcher=make_fetcher(), sink=MemoryPageSink())

        with pytest.raises(SnapshotError):
            scheduler.initialize(['http://a.test/'])
        scheduler.close()

    def test_missing_seed_file(self, crawl_config, make_fetcher):
        scheduler = CrawlerScheduler(crawl_config, fetcher=make_fetcher(), sink=MemoryPageSink())

        with pytest.raises(InputError):
            scheduler.initialize()

    def test_seed_file(self, crawl_config, make_fetcher, tmp_path):
        seed_file = tmp_path / 'seeds.txt'
        seed_file.write_text('# seeds\n\nhttps://WWW.A.test/Index.html\nhttp://b.test/x\n')
        scheduler = CrawlerScheduler(crawl_config, fetcher=make_fetcher(), sink=MemoryPageSink())

        scheduler.initialize()

        assert scheduler.frontier.snapshot()[0] == ['https://a.test/', 'http://b.test/x']

    def test_get_stats(self, crawl_config, make_fetcher):
        fetcher = make_fetcher(pages={'http://a.test/': '<html><body>home</body></html>'})
        scheduler, _ = run_crawl(crawl_config, fetcher, ['http://a.test/'])

        stats = scheduler.get_stats()
        assert stats['pages_stored'] == 1
        assert stats['urls_crawled'] == 1
        assert stats['frontier']['pages_completed'] == 1
        assert stats['is_running'] is False


class TestSeedFile:
    def test_comments_and_blank_lines(self, tmp_path):
        path = tmp_path / 'seeds.txt'
        path.write_text('# comment\n\n   \nhttp://a.test/\n  # indented comment\n')

        assert read_seed_file(str(path), URLNormalizer()) == ['http://a.test/']

    @pytest.mark.parametrize('line', ['not a url', 'ftp://a.test/file', 'http://a.test:99999/'])
    def test_malformed_url(self, tmp_path, line):
        path = tmp_path / 'seeds.txt'
        path.write_text(f'http://a.test/\n{line}\n')

        with pytest.raises(InputError):
            read_seed_file(str(path), URLNormalizer())

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(InputError):
            read_seed_file(str(tmp_path / 'missing.txt'), URLNormalizer())


class TestCrawlStats:
    def test_counters(self):
        stats = CrawlStats()
        stats.record_fetch(0.5, 100)
        stats.record_fetch(1.5, 300)
        stats.record_page()
        stats.record_error()

        summary = stats.as_dict()
        assert summary['urls_crawled'] == 2
        assert summary['total_bytes_downloaded'] == 400
        assert summary['average_response_time'] == 1.0
        assert summary['pages_stored'] == 1
        assert summary['errors'] == 1
