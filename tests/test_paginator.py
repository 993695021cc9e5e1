import threading
import unittest

from fake_s3 import FakeS3Client, client_error, make_client
from s3kit.errors import AuthFailureError, InvalidContinuationError, OperationCancelledError, ValidationError
from s3kit.models import ObjectIdentifier
from s3kit.paginator import ObjectPaginator, PaginatorState


def sixty_object_client():
    fake = FakeS3Client(["bucket-one", "bucket-two"])
    fake.add_objects("bucket-one", [f"obj-{i:03d}" for i in range(60)])
    fake.add_objects("bucket-two", [f"obj-{i:03d}" for i in range(60)])
    client, _, _ = make_client(fake)
    return client, fake


class ObjectPaginatorTests(unittest.TestCase):
    def test_sixty_objects_in_pages_of_twenty_five(self):
        client, _ = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25)

        pages = list(paginator)

        self.assertEqual([25, 25, 10], [len(page.items) for page in pages])
        self.assertEqual([True, True, False], [page.truncated for page in pages])
        self.assertIsNone(pages[-1].cursor)
        self.assertEqual(PaginatorState.EXHAUSTED, paginator.state)
        self.assertEqual(3, paginator.pages_fetched)

    def test_exhausted_paginator_makes_no_more_requests(self):
        client, fake = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one")

        self.assertEqual(60, len(paginator.next_page().items))
        self.assertIsNone(paginator.next_page())
        self.assertIsNone(paginator.next_page())

        self.assertEqual(1, len(fake.list_objects_kwargs))

    def test_state_returns_to_ready_between_pages(self):
        client, fake = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25)

        self.assertEqual(PaginatorState.READY, paginator.state)
        self.assertIsNone(paginator.cursor)
        first = paginator.next_page()

        self.assertEqual(PaginatorState.READY, paginator.state)
        self.assertEqual(first.cursor, paginator.cursor)
        self.assertNotIn("ContinuationToken", fake.list_objects_kwargs[0])

    def test_cursor_from_another_bucket_is_rejected(self):
        client, _ = sixty_object_client()
        source = ObjectPaginator(client, "bucket-one", page_size=25)
        source.next_page()
        second = source.next_page()

        foreign = ObjectPaginator(client, "bucket-two", page_size=25, starting_cursor=second.cursor)

        with self.assertRaises(InvalidContinuationError):
            foreign.next_page()
        self.assertEqual(PaginatorState.READY, foreign.state)

    def test_cursor_from_another_prefix_is_rejected(self):
        client, _ = sixty_object_client()
        source = ObjectPaginator(client, "bucket-one", page_size=25)
        first = source.next_page()

        foreign = ObjectPaginator(client, "bucket-one", prefix="obj-0", starting_cursor=first.cursor)

        with self.assertRaises(InvalidContinuationError):
            foreign.next_page()

    def test_starting_cursor_resumes_listing(self):
        client, _ = sixty_object_client()
        first = ObjectPaginator(client, "bucket-one", page_size=25).next_page()

        resumed = ObjectPaginator(client, "bucket-one", page_size=25, starting_cursor=first.cursor)

        keys = [item.key for item in resumed.objects()]
        self.assertEqual(35, len(keys))
        self.assertEqual("obj-025", keys[0])

    def test_error_leaves_paginator_ready_on_same_page(self):
        client, fake = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25)
        paginator.next_page()
        cursor = paginator.cursor
        fake.fail("list_objects_v2", client_error("AccessDenied", 403, "ListObjectsV2"))

        with self.assertRaises(AuthFailureError):
            paginator.next_page()

        self.assertEqual(PaginatorState.READY, paginator.state)
        self.assertEqual(cursor, paginator.cursor)
        self.assertEqual("obj-025", paginator.next_page().items[0].key)

    def test_reset_starts_over(self):
        client, _ = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25)
        list(paginator)

        paginator.reset()

        self.assertEqual(PaginatorState.READY, paginator.state)
        self.assertEqual("obj-000", paginator.next_page().items[0].key)

    def test_identifiers_cover_every_object(self):
        client, _ = sixty_object_client()

        identifiers = list(ObjectPaginator(client, "bucket-one", page_size=25).identifiers())

        self.assertEqual(60, len(set(identifiers)))
        self.assertEqual(ObjectIdentifier("bucket-one", "obj-000"), identifiers[0])

    def test_empty_grouping_yields_single_empty_page(self):
        client, _ = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", prefix="nothing/", delimiter="/")

        pages = list(paginator)

        self.assertEqual(1, len(pages))
        self.assertEqual([], pages[0].items)
        self.assertEqual([], pages[0].common_prefixes)
        self.assertFalse(pages[0].truncated)

    def test_cancel_event_stops_before_next_request(self):
        client, fake = sixty_object_client()
        cancel = threading.Event()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25, cancel_event=cancel)
        paginator.next_page()

        cancel.set()

        with self.assertRaises(OperationCancelledError):
            paginator.next_page()
        self.assertEqual(1, len(fake.list_objects_kwargs))

    def test_caller_may_stop_pulling_early(self):
        client, fake = sixty_object_client()
        paginator = ObjectPaginator(client, "bucket-one", page_size=25)

        for number, _ in enumerate(paginator, start=1):
            if number == 2:
                break

        self.assertEqual(2, len(fake.list_objects_kwargs))
        self.assertEqual(PaginatorState.READY, paginator.state)

    def test_validates_page_size(self):
        client, _ = sixty_object_client()

        with self.assertRaises(ValidationError):
            ObjectPaginator(client, "bucket-one", page_size=0)


if __name__ == "__main__":
    unittest.main()
