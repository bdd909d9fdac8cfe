import unittest
from unittest import mock
from urllib.parse import quote

import requests

import download_proxy
from app import app
from download_proxy import DownloadError, check_target, is_allowed_host, resolve_target
from tests.fakes import FakeStream

VIDEO_URL = "https://bcdnw.hakunaymatata.com/resource/abc.mp4?sign=s1&t=99"
BODY = bytes(range(256)) * 3 + bytes(232)  # 1000 bytes


class TestTargetValidation(unittest.TestCase):

    def test_path_segment_wins(self):
        self.assertEqual(resolve_target("https://a/x.mp4", "https://b/y.mp4"), "https://a/x.mp4")
        self.assertEqual(resolve_target(None, "https://b/y.mp4"), "https://b/y.mp4")

    def test_still_encoded_segment(self):
        self.assertEqual(resolve_target(quote(VIDEO_URL, safe="")), VIDEO_URL)

    def test_missing(self):
        with self.assertRaises(DownloadError) as ctx:
            resolve_target(None, "")
        self.assertEqual(ctx.exception.status, 400)

    def test_raw_segment_keeps_its_query(self):
        self.assertEqual(
            resolve_target("https://a/x.mp4", None, "sign=x&t=1"),
            "https://a/x.mp4?sign=x&t=1",
        )
        self.assertEqual(
            resolve_target("https://a/x.mp4?v=2", "https://ignored", "url=https%3A%2F%2Fignored&t=1"),
            "https://a/x.mp4?v=2&t=1",
        )

    def test_query_url_is_not_extended(self):
        self.assertEqual(resolve_target(None, "https://b/y.mp4", "url=https%3A%2F%2Fb%2Fy.mp4"),
                         "https://b/y.mp4")

    def test_allowlist(self):
        self.assertTrue(is_allowed_host(VIDEO_URL))
        self.assertTrue(is_allowed_host("https://valiw.hakunaymatata.com/x.mp4"))
        self.assertTrue(is_allowed_host("https://edge.bcdnw.hakunaymatata.com/x.mp4"))
        self.assertFalse(is_allowed_host("https://evil.example.com/x.mp4"))
        self.assertFalse(is_allowed_host("https://bcdnw.hakunaymatata.com.evil.example/x.mp4"))
        self.assertFalse(is_allowed_host("ftp://bcdnw.hakunaymatata.com/x.mp4"))

    def test_enforcement_can_be_disabled(self):
        self.assertEqual(check_target("https://evil.example.com/x.mp4", enforce=False),
                         "https://evil.example.com/x.mp4")
        with self.assertRaises(DownloadError) as ctx:
            check_target("https://evil.example.com/x.mp4", enforce=True)
        self.assertEqual(ctx.exception.status, 403)

    def test_upstream_headers(self):
        headers = download_proxy.upstream_headers("bytes=0-99")
        self.assertEqual(headers["Range"], "bytes=0-99")
        self.assertEqual(headers["Accept"], "*/*")
        self.assertEqual(headers["Referer"], "https://fmoviesunblocked.net/")
        self.assertEqual(headers["Origin"], "https://fmoviesunblocked.net")
        self.assertNotIn("Range", download_proxy.upstream_headers())


class TestDownloadRoute(unittest.TestCase):

    def setUp(self):
        self.client = app.test_client()
        patcher = mock.patch("download_proxy.requests.get")
        self.get = patcher.start()
        self.addCleanup(patcher.stop)

    def test_range_request_is_partial(self):
        stream = FakeStream(206, BODY[:100], {
            "Content-Type": "video/mp4",
            "Content-Range": "bytes 0-99/1000",
            "Content-Length": "100",
        })
        self.get.return_value = stream

        resp = self.client.get("/api/download", query_string={"url": VIDEO_URL},
                               headers={"Range": "bytes=0-99"})

        self.assertEqual(resp.status_code, 206)
        self.assertEqual(resp.headers["Content-Range"], "bytes 0-99/1000")
        self.assertEqual(resp.headers["Content-Length"], "100")
        self.assertEqual(resp.headers["Accept-Ranges"], "bytes")
        self.assertEqual(resp.data, BODY[:100])
        self.assertTrue(stream.closed)

        args, kwargs = self.get.call_args
        self.assertEqual(args[0], VIDEO_URL)
        self.assertEqual(kwargs["headers"]["Range"], "bytes=0-99")
        self.assertTrue(kwargs["stream"])

    def test_full_request(self):
        self.get.return_value = FakeStream(200, BODY, {
            "Content-Type": "video/mp4",
            "Content-Length": "1000",
        })

        resp = self.client.get("/api/download", query_string={"url": VIDEO_URL})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["Content-Length"], "1000")
        self.assertEqual(resp.headers["Accept-Ranges"], "bytes")
        self.assertNotIn("Content-Range", resp.headers)
        self.assertEqual(len(resp.data), 1000)
        self.assertNotIn("Range", self.get.call_args[1]["headers"])

    def test_encoded_path_segment(self):
        self.get.return_value = FakeStream(200, b"abc", {"Content-Length": "3"})

        resp = self.client.get("/api/download/" + quote(VIDEO_URL, safe=""))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, b"abc")
        self.assertEqual(self.get.call_args[0][0], VIDEO_URL)

    def test_default_content_type(self):
        self.get.return_value = FakeStream(200, b"abc", {"Content-Length": "3"})
        resp = self.client.get("/api/download", query_string={"url": VIDEO_URL})
        self.assertEqual(resp.headers["Content-Type"], "video/mp4")

    def test_missing_target(self):
        resp = self.client.get("/api/download")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["status"], "error")
        self.get.assert_not_called()

    def test_empty_path_segment(self):
        resp = self.client.get("/api/download/")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["message"], "Missing download URL")
        self.get.assert_not_called()

    def test_unencoded_target_keeps_signature(self):
        self.get.return_value = FakeStream(200, b"abc", {"Content-Length": "3"})

        resp = self.client.get("/api/download/https://bcdnw.hakunaymatata.com/a.mp4?sign=x&t=1")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.get.call_args[0][0], "https://bcdnw.hakunaymatata.com/a.mp4?sign=x&t=1")

    def test_disallowed_host(self):
        resp = self.client.get("/api/download", query_string={"url": "https://evil.example.com/x.mp4"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["status"], "error")
        self.get.assert_not_called()

    def test_upstream_error_status(self):
        stream = FakeStream(404, b"", {})
        self.get.return_value = stream
        resp = self.client.get("/api/download", query_string={"url": VIDEO_URL})
        self.assertEqual(resp.status_code, 500)
        self.assertIn("HTTP 404", resp.get_json()["message"])
        self.assertTrue(stream.closed)

    def test_upstream_unreachable(self):
        self.get.side_effect = requests.exceptions.ConnectionError("refused")
        resp = self.client.get("/api/download", query_string={"url": VIDEO_URL})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json()["status"], "error")


class TestStreamTeardown(unittest.TestCase):

    def test_client_disconnect_closes_upstream(self):
        stream = FakeStream(200, BODY, {"Content-Length": "1000"})
        with app.test_request_context():
            response = download_proxy.stream_response(stream)
            chunks = iter(response.response)
            next(chunks)
            # WSGI servers close the iterator when the client goes away
            response.response.close()
        self.assertTrue(stream.closed)

    def test_close_before_first_chunk(self):
        stream = FakeStream(200, BODY, {"Content-Length": "1000"})
        with app.test_request_context():
            response = download_proxy.stream_response(stream)
            response.close()
        self.assertTrue(stream.closed)

    def test_upstream_failure_mid_stream(self):
        stream = FakeStream(200, BODY, {"Content-Length": "1000"}, fail_after=1)
        with mock.patch("config.CHUNK_SIZE", 10):
            with app.test_request_context():
                response = download_proxy.stream_response(stream)
                chunks = iter(response.response)
                self.assertEqual(next(chunks), BODY[:10])
                with self.assertRaises(requests.exceptions.ChunkedEncodingError):
                    next(chunks)
        self.assertTrue(stream.closed)


if __name__ == "__main__":
    unittest.main()
