"""
Unit tests for the reader/writer lock guarding the agent credentials.
"""

import threading
import time

from kubevirtbmc.utils.locks import ReadWriteLock


class TestReadWriteLock:
    """Reader/writer exclusion."""

    def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        with lock.read_lock(), lock.read_lock():
            pass

    def test_writer_waits_for_readers(self):
        lock = ReadWriteLock()
        order = []

        lock.acquire_read()

        def writer():
            with lock.write_lock():
                order.append("write")

        thread = threading.Thread(target=writer)
        thread.start()
        time.sleep(0.05)
        order.append("read-done")
        lock.release_read()
        thread.join(timeout=2)

        assert order == ["read-done", "write"]

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        order = []

        lock.acquire_read()

        def writer():
            with lock.write_lock():
                order.append("write")

        def reader():
            with lock.read_lock():
                order.append("read")

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=reader)
        reader_thread.start()
        time.sleep(0.05)

        assert order == []
        lock.release_read()
        writer_thread.join(timeout=2)
        reader_thread.join(timeout=2)

        assert order == ["write", "read"]
