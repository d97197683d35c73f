import threading
import time

import pytest

from search_crawler.crawler.url_frontier import URLFrontier


@pytest.fixture
def frontier():
    return URLFrontier(max_pages=5, max_per_host=2)


class TestAdmission:
    def test_admit_once(self, frontier):
        assert frontier.try_admit('http://a.test/1')
        assert not frontier.try_admit('http://a.test/1')

        assert frontier.page_counter == 1
        assert frontier.host_count('a.test') == 1
        assert frontier.is_visited('http://a.test/1')

    def test_host_cap(self, frontier):
        assert frontier.try_admit('http://a.test/1')
        assert frontier.try_admit('http://a.test/2')
        assert not frontier.try_admit('http://a.test/3')
        assert frontier.try_admit('http://b.test/1')

        assert frontier.host_count('a.test') == 2
        assert not frontier.is_visited('http://a.test/3')

    def test_page_cap(self, frontier):
        for host in 'abcde':
            assert frontier.try_admit(f'http://{host}.test/')
        assert not frontier.try_admit('http://f.test/')
        assert frontier.page_counter == 5

    def test_ports_are_separate_hosts(self, frontier):
        assert frontier.try_admit('http://a.test/1')
        assert frontier.try_admit('http://a.test/2')
        assert frontier.try_admit('http://a.test:8080/1')

    def test_malformed_url_rejected(self, frontier):
        assert not frontier.try_admit('http://a.test:notaport/')
        assert frontier.page_counter == 0

    def test_could_admit_is_side_effect_free(self, frontier):
        assert frontier.could_admit('http://a.test/1')
        assert frontier.page_counter == 0
        frontier.try_admit('http://a.test/1')
        assert not frontier.could_admit('http://a.test/1')

    def test_seed_applies_caps(self):
        frontier = URLFrontier(max_pages=10, max_per_host=2)
        added = frontier.seed([f'http://x.test/{i}' for i in range(5)])

        assert added == 2
        assert frontier.host_count('x.test') == 2

    def test_concurrent_admission_of_same_url(self):
        frontier = URLFrontier(max_pages=100, max_per_host=100)
        barrier = threading.Barrier(16)
        results = []
        lock = threading.Lock()

        def admit():
            barrier.wait()
            admitted = frontier.try_admit('http://a.test/u')
            with lock:
                results.append(admitted)

        threads = [threading.Thread(target=admit) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        pending, visited = frontier.snapshot()
        assert pending == ['http://a.test/u']
        assert visited == ['http://a.test/u']

    def test_concurrent_admission_respects_host_cap(self):
        frontier = URLFrontier(max_pages=1000, max_per_host=7)
        barrier = threading.Barrier(10)

        def admit(worker):
            barrier.wait()
            for i in range(20):
                frontier.try_admit(f'http://a.test/{worker}/{i}')

        threads = [threading.Thread(target=admit, args=(n,)) for n in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert frontier.host_count('a.test') == 7
        assert len(frontier.snapshot()[0]) == 7


class TestQueue:
    def test_fifo(self, frontier):
        frontier.seed(['http://a.test/1', 'http://b.test/1', 'http://a.test/2'])

        assert frontier.next_url(0.1) == 'http://a.test/1'
        assert frontier.next_url(0.1) == 'http://b.test/1'
        assert frontier.next_url(0.1) == 'http://a.test/2'

    def test_empty_poll_times_out(self, frontier):
        started = time.monotonic()
        assert frontier.next_url(0.1) is None
        assert time.monotonic() - started >= 0.09

    def test_waiter_woken_by_admission(self, frontier):
        received = []
        consumer = threading.Thread(target=lambda: received.append(frontier.next_url(5.0)))
        consumer.start()
        time.sleep(0.05)
        frontier.try_admit('http://a.test/late')
        consumer.join(timeout=5.0)

        assert received == ['http://a.test/late']

    def test_close_wakes_waiters(self, frontier):
        received = []
        consumer = threading.Thread(target=lambda: received.append(frontier.next_url(30.0)))
        consumer.start()
        time.sleep(0.05)
        frontier.close()
        consumer.join(timeout=5.0)

        assert not consumer.is_alive()
        assert received == [None]
        assert not frontier.try_admit('http://a.test/after-close')


class TestRetract:
    def test_retract_frees_budget(self, frontier):
        frontier.try_admit('http://a.test/1')
        frontier.try_admit('http://a.test/2')
        url = frontier.next_url(0.1)

        frontier.retract(url)

        assert frontier.host_count('a.test') == 1
        assert frontier.page_counter == 1
        assert frontier.is_visited(url)
        assert not frontier.try_admit(url)
        assert frontier.try_admit('http://a.test/3')

    def test_retract_never_negative(self, frontier):
        frontier.retract('http://a.test/never-admitted')
        assert frontier.page_counter == 0
        assert frontier.host_count('a.test') == 0

    def test_cap_reached_counts_completed_pages(self):
        frontier = URLFrontier(max_pages=2, max_per_host=10)
        frontier.seed(['http://a.test/1', 'http://a.test/2'])

        frontier.complete(frontier.next_url(0.1))
        assert not frontier.cap_reached()
        frontier.complete(frontier.next_url(0.1))
        assert frontier.cap_reached()

    def test_mark_alias(self, frontier):
        frontier.try_admit('http://a.test/1')

        assert not frontier.mark_alias('http://a.test/1')
        assert frontier.mark_alias('http://a.test/alias')
        assert frontier.is_visited('http://a.test/alias')
        assert frontier.page_counter == 1

    def test_mark_alias_moves_host_budget(self, frontier):
        frontier.try_admit('http://a.test/old')

        assert frontier.mark_alias('http://b.test/new', origin='http://a.test/old')
        assert frontier.host_count('a.test') == 0
        assert frontier.host_count('b.test') == 1
        assert frontier.page_counter == 1

    def test_mark_alias_refused_when_target_host_full(self, frontier):
        frontier.try_admit('http://b.test/1')
        frontier.try_admit('http://b.test/2')
        frontier.try_admit('http://a.test/old')

        assert not frontier.mark_alias('http://b.test/3', origin='http://a.test/old')
        assert not frontier.is_visited('http://b.test/3')
        assert frontier.host_count('a.test') == 1
        assert frontier.host_count('b.test') == 2


class TestRestore:
    def test_restore_round_trip(self):
        frontier = URLFrontier(max_pages=10, max_per_host=10)
        frontier.seed(['http://a.test/1', 'http://a.test/2', 'http://b.test/1'])
        frontier.next_url(0.1)
        pending, visited = frontier.snapshot()

        restored = URLFrontier(max_pages=10, max_per_host=10)
        restored.restore(pending, visited)

        assert restored.snapshot() == (pending, visited)
        assert restored.page_counter == 3
        assert restored.host_count('a.test') == 2

    def test_restore_clamps_counters(self):
        frontier = URLFrontier(max_pages=3, max_per_host=1)
        frontier.restore([], [f'http://a.test/{i}' for i in range(5)])

        assert frontier.page_counter == 3
        assert frontier.host_count('a.test') == 1
        assert not frontier.try_admit('http://b.test/')

    def test_restore_then_seed_skips_visited(self):
        frontier = URLFrontier(max_pages=10, max_per_host=10)
        frontier.restore(['http://a.test/pending'], ['http://a.test/done'])
        added = frontier.seed(['http://a.test/done', 'http://a.test/pending', 'http://a.test/new'])

        assert added == 1
        assert frontier.snapshot()[0] == ['http://a.test/pending', 'http://a.test/new']
