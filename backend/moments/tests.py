"""
Tests for MomentFeed

Focus areas:
1. Ownership (owner-only delete, no existence leak)
2. Cascade deletion and retention eviction
3. replyCount consistency after any sequence of mutations
4. The HTTP contract the polling client depends on
"""

import random
import threading
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

from django.apps import apps
from django.test import SimpleTestCase
from rest_framework.test import APISimpleTestCase

from .exceptions import NotFoundError, ValidationError
from .models import DEFAULT_DISPLAY_NAME, MAX_TEXT_LENGTH
from .store import FeedStore


def ticking_clock(start=None, step=timedelta(seconds=1)):
    """A clock that advances `step` on every call."""
    current = [start or datetime(2024, 1, 1, tzinfo=dt_timezone.utc)]

    def clock():
        value = current[0]
        current[0] = value + step
        return value
    return clock


class MomentCreateTestCase(SimpleTestCase):
    """Creating moments and the text/author rules."""

    def setUp(self):
        self.store = FeedStore(clock=ticking_clock())

    def test_new_moment_is_listed_first(self):
        self.store.moments.create('first', 'u1')
        newest = self.store.moments.create('second', 'u2')

        listed = self.store.moments.list()
        self.assertEqual(listed[0].id, newest.id)
        self.assertEqual([m.text for m in listed], ['second', 'first'])

    def test_new_moment_has_no_replies(self):
        moment = self.store.moments.create('hello', 'u1')

        self.assertTrue(moment.id)
        self.assertIsNotNone(moment.created_at)
        self.assertEqual(moment.reply_count, 0)
        self.assertEqual(moment.replies, ())

    def test_text_at_limit_succeeds(self):
        moment = self.store.moments.create('x' * MAX_TEXT_LENGTH, 'u1')
        self.assertEqual(len(moment.text), 280)

    def test_text_over_limit_fails(self):
        with self.assertRaises(ValidationError):
            self.store.moments.create('x' * (MAX_TEXT_LENGTH + 1), 'u1')
        self.assertEqual(len(self.store.moments), 0)

    def test_whitespace_only_text_fails(self):
        for text in ['', '   ', '\n\t ', None]:
            with self.subTest(text=text):
                with self.assertRaises(ValidationError):
                    self.store.moments.create(text, 'u1')
        self.assertEqual(len(self.store.moments), 0)

    def test_text_is_trimmed_before_length_check(self):
        """Surrounding whitespace does not count toward the 280 chars."""
        moment = self.store.moments.create('  ' + 'y' * 280 + '  ', 'u1')
        self.assertEqual(moment.text, 'y' * 280)

    def test_missing_author_fails(self):
        for author_id in [None, '', '   ']:
            with self.subTest(author_id=author_id):
                with self.assertRaises(ValidationError):
                    self.store.moments.create('hello', author_id)

    def test_display_name_defaults(self):
        anonymous = self.store.moments.create('a', 'u1')
        blank = self.store.moments.create('b', 'u1', display_name='  ')
        named = self.store.moments.create('c', 'u1', display_name='Blue Fox')

        self.assertEqual(anonymous.display_name, DEFAULT_DISPLAY_NAME)
        self.assertEqual(blank.display_name, DEFAULT_DISPLAY_NAME)
        self.assertEqual(named.display_name, 'Blue Fox')

    def test_empty_image_is_stored_as_none(self):
        without = self.store.moments.create('a', 'u1', image='')
        with_image = self.store.moments.create('b', 'u1', image='data:image/png;base64,AAAA')

        self.assertIsNone(without.image)
        self.assertEqual(with_image.image, 'data:image/png;base64,AAAA')

    def test_ids_are_unique(self):
        ids = {self.store.moments.create(f'm{i}', 'u1').id for i in range(50)}
        self.assertEqual(len(ids), 50)


class OwnershipTestCase(SimpleTestCase):
    """
    Owner-only delete.

    A non-owner must get exactly what they would get for a missing id.
    """

    def setUp(self):
        self.store = FeedStore()
        self.moment = self.store.moments.create('mine', 'alice')
        self.reply = self.store.replies.create('hi', 'bob', self.moment.id)

    def test_other_author_cannot_delete_moment(self):
        with self.assertRaises(NotFoundError):
            self.store.moments.delete(self.moment.id, 'mallory')

        self.assertIn(self.moment.id, self.store.moments)
        self.assertEqual(self.store.moments.list()[0].reply_count, 1)

    def test_unauthorized_and_missing_look_the_same(self):
        with self.assertRaises(NotFoundError) as unauthorized:
            self.store.moments.delete(self.moment.id, 'mallory')
        with self.assertRaises(NotFoundError) as missing:
            self.store.moments.delete('no-such-id', 'alice')

        self.assertEqual(str(unauthorized.exception), str(missing.exception))

    def test_owner_can_delete_moment(self):
        deleted = self.store.moments.delete(self.moment.id, 'alice')

        self.assertEqual(deleted.id, self.moment.id)
        self.assertEqual(self.store.moments.list(), [])

    def test_reply_owner_only(self):
        # The moment's author does not own replies to it
        with self.assertRaises(NotFoundError):
            self.store.replies.delete(self.reply.id, 'alice')
        self.assertIn(self.reply.id, self.store.replies)

        deleted = self.store.replies.delete(self.reply.id, 'bob')
        self.assertEqual(deleted.id, self.reply.id)
        self.assertEqual(self.store.moments.list()[0].reply_count, 0)

    def test_delete_without_author_is_validation_error(self):
        with self.assertRaises(ValidationError):
            self.store.moments.delete(self.moment.id, '')
        with self.assertRaises(ValidationError):
            self.store.replies.delete(self.reply.id, None)

    def test_display_name_grants_nothing(self):
        self.store.moments.create('other', 'carol', display_name='alice')
        with self.assertRaises(NotFoundError):
            self.store.moments.delete(self.moment.id, 'carol')


class ReplyTestCase(SimpleTestCase):
    """Reply creation, ordering and cascade deletion."""

    def setUp(self):
        self.store = FeedStore(clock=ticking_clock())
        self.m1 = self.store.moments.create('one', 'u1')
        self.m2 = self.store.moments.create('two', 'u2')

    def test_reply_to_unknown_moment_fails(self):
        with self.assertRaises(NotFoundError):
            self.store.replies.create('hi', 'u3', 'no-such-moment')
        self.assertEqual(len(self.store.replies), 0)

    def test_reply_without_moment_id_fails(self):
        with self.assertRaises(ValidationError):
            self.store.replies.create('hi', 'u3', '')

    def test_reply_without_author_fails(self):
        for author_id in ['', '   ', None, 42]:
            with self.subTest(author_id=author_id):
                with self.assertRaises(ValidationError):
                    self.store.replies.create('hi', author_id, self.m1.id)
        self.assertEqual(len(self.store.replies), 0)

    def test_reply_text_rules_match_moment(self):
        with self.assertRaises(ValidationError):
            self.store.replies.create('z' * 281, 'u3', self.m1.id)
        with self.assertRaises(ValidationError):
            self.store.replies.create('  ', 'u3', self.m1.id)

        reply = self.store.replies.create('z' * 280, 'u3', self.m1.id)
        self.assertEqual(reply.display_name, DEFAULT_DISPLAY_NAME)

    def test_replies_listed_oldest_first(self):
        first = self.store.replies.create('first', 'u3', self.m1.id)
        second = self.store.replies.create('second', 'u4', self.m1.id)

        moment = next(m for m in self.store.moments.list() if m.id == self.m1.id)
        self.assertEqual([r.id for r in moment.replies], [first.id, second.id])
        self.assertLess(first.created_at, second.created_at)

    def test_delete_moment_removes_only_its_replies(self):
        """Deleting m1 leaves m2's replies untouched."""
        for i in range(3):
            self.store.replies.create(f'r1-{i}', 'u3', self.m1.id)
        for i in range(2):
            self.store.replies.create(f'r2-{i}', 'u3', self.m2.id)

        self.store.moments.delete(self.m1.id, 'u1')

        listed = self.store.moments.list()
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0].id, self.m2.id)
        self.assertEqual(listed[0].reply_count, 2)
        self.assertEqual(len(self.store.replies), 2)
        self.assertEqual(self.store.replies.for_moment(self.m1.id), [])

    def test_delete_by_moment_returns_count(self):
        self.store.replies.create('a', 'u3', self.m1.id)
        self.store.replies.create('b', 'u3', self.m1.id)

        self.assertEqual(self.store.replies.delete_by_moment(self.m1.id), 2)
        self.assertEqual(self.store.replies.delete_by_moment(self.m1.id), 0)

    def test_reply_gone_after_moment_deleted(self):
        reply = self.store.replies.create('hi', 'u3', self.m1.id)
        self.store.moments.delete(self.m1.id, 'u1')

        with self.assertRaises(NotFoundError):
            self.store.replies.delete(reply.id, 'u3')


class RetentionTestCase(SimpleTestCase):
    """Retention bounds evict oldest first."""

    def test_moment_retention_evicts_oldest(self):
        store = FeedStore(max_moments=3, clock=ticking_clock())
        created = [store.moments.create(f'm{i}', 'u1') for i in range(4)]

        listed = store.moments.list()
        self.assertEqual(len(listed), 3)
        self.assertNotIn(created[0].id, store.moments)
        self.assertEqual([m.id for m in listed], [c.id for c in reversed(created[1:])])

    def test_evicted_moment_takes_its_replies(self):
        store = FeedStore(max_moments=2, clock=ticking_clock())
        oldest = store.moments.create('old', 'u1')
        store.replies.create('r', 'u2', oldest.id)
        keeper = store.moments.create('keep', 'u1')
        kept_reply = store.replies.create('r', 'u2', keeper.id)

        store.moments.create('new', 'u1')

        self.assertNotIn(oldest.id, store.moments)
        self.assertEqual(len(store.replies), 1)
        self.assertIn(kept_reply.id, store.replies)

    def test_reply_retention_is_global(self):
        store = FeedStore(max_replies=3, clock=ticking_clock())
        m1 = store.moments.create('one', 'u1')
        m2 = store.moments.create('two', 'u1')

        r0 = store.replies.create('r0', 'u2', m1.id)
        store.replies.create('r1', 'u2', m2.id)
        store.replies.create('r2', 'u2', m2.id)
        store.replies.create('r3', 'u2', m2.id)

        self.assertEqual(len(store.replies), 3)
        self.assertNotIn(r0.id, store.replies)
        counts = {m.id: m.reply_count for m in store.moments.list()}
        self.assertEqual(counts, {m1.id: 0, m2.id: 3})

    def test_bounds_must_be_positive(self):
        with self.assertRaises(ValueError):
            FeedStore(max_moments=0)
        with self.assertRaises(ValueError):
            FeedStore(max_replies=0)


class TimestampTestCase(SimpleTestCase):

    def test_clock_going_backwards_is_clamped(self):
        start = datetime(2024, 1, 1, 12, tzinfo=dt_timezone.utc)
        readings = iter([start, start - timedelta(minutes=5), start + timedelta(seconds=1)])
        store = FeedStore(clock=lambda: next(readings))

        a = store.moments.create('a', 'u1')
        b = store.moments.create('b', 'u1')
        c = store.moments.create('c', 'u1')

        self.assertEqual(b.created_at, a.created_at)
        self.assertGreater(c.created_at, b.created_at)
        self.assertEqual([m.text for m in store.moments.list()], ['c', 'b', 'a'])

    def test_timestamp_is_epoch_millis(self):
        when = datetime(2024, 1, 1, tzinfo=dt_timezone.utc)
        store = FeedStore(clock=lambda: when)
        moment = store.moments.create('a', 'u1')
        self.assertEqual(moment.timestamp, 1704067200000)


class ReplyCountInvariantTestCase(SimpleTestCase):
    """
    replyCount must equal the live reply count after EVERY mutation.

    Random walk over create/delete operations, including failing ones.
    """

    def assert_consistent(self, store):
        live = {}
        for moment in store.moments.list():
            self.assertEqual(moment.reply_count, len(moment.replies))
            self.assertEqual(list(moment.replies), store.replies.for_moment(moment.id))
            live[moment.id] = moment.reply_count
        # No dangling replies
        self.assertEqual(sum(live.values()), len(store.replies))

    def test_random_operations(self):
        rng = random.Random(1234)
        store = FeedStore(max_moments=8, max_replies=20, clock=ticking_clock())
        authors = ['a', 'b', 'c']
        moment_ids, reply_ids = [], []

        for _ in range(400):
            op = rng.choice(['moment', 'reply', 'reply', 'del_moment', 'del_reply'])
            author = rng.choice(authors)
            try:
                if op == 'moment':
                    moment_ids.append(store.moments.create('m', author).id)
                elif op == 'reply' and moment_ids:
                    target = rng.choice(moment_ids)
                    reply_ids.append(store.replies.create('r', author, target).id)
                elif op == 'del_moment' and moment_ids:
                    store.moments.delete(rng.choice(moment_ids), author)
                elif op == 'del_reply' and reply_ids:
                    store.replies.delete(rng.choice(reply_ids), author)
            except NotFoundError:
                pass
            self.assert_consistent(store)
            self.assertLessEqual(len(store.moments), 8)
            self.assertLessEqual(len(store.replies), 20)


class ConcurrencyTestCase(SimpleTestCase):
    """Concurrent writers through the shared lock keep the invariants."""

    def test_parallel_replies_and_deletes(self):
        store = FeedStore()
        moments = [store.moments.create(f'm{i}', f'owner{i}') for i in range(10)]
        errors = []

        def reply_worker(n):
            for moment in moments:
                try:
                    store.replies.create(f'r{n}', f'replier{n}', moment.id)
                except NotFoundError:
                    pass
                except Exception as exc:  # pragma: no cover - surfaced below
                    errors.append(exc)

        def delete_worker():
            for i, moment in enumerate(moments[::2]):
                store.moments.delete(moment.id, f'owner{i * 2}')

        threads = [threading.Thread(target=reply_worker, args=(n,)) for n in range(8)]
        threads.append(threading.Thread(target=delete_worker))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        listed = store.moments.list()
        self.assertEqual(len(listed), 5)
        self.assertEqual(sum(m.reply_count for m in listed), len(store.replies))
        for moment in listed:
            self.assertEqual(moment.reply_count, 8)


class MomentsAPITestCase(APISimpleTestCase):
    """The HTTP contract consumed by the polling client."""

    def setUp(self):
        config = apps.get_app_config('moments')
        original = config.store
        config.store = FeedStore(max_moments=5, max_replies=10)
        self.addCleanup(setattr, config, 'store', original)

    def create_moment(self, text='hello', anonymous_id='u1', **extra):
        body = {'text': text, 'anonymousId': anonymous_id, **extra}
        return self.client.post('/api/moments', body, format='json')

    def test_full_scenario(self):
        """create -> reply -> list -> delete cascades -> reply is gone."""
        response = self.create_moment('hello', 'u1')
        self.assertEqual(response.status_code, 201)
        moment = response.json()
        self.assertIn('id', moment)
        self.assertIn('createdAt', moment)
        self.assertEqual(moment['replyCount'], 0)
        self.assertEqual(moment['replies'], [])

        response = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2', 'momentId': moment['id']
        }, format='json')
        self.assertEqual(response.status_code, 201)
        reply = response.json()
        self.assertEqual(reply['momentId'], moment['id'])

        listed = self.client.get('/api/moments').json()
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0]['replyCount'], 1)
        self.assertEqual(len(listed[0]['replies']), 1)
        self.assertEqual(listed[0]['replies'][0]['text'], 'hi')
        self.assertEqual(listed[0]['replies'][0]['anonymousId'], 'u2')

        response = self.client.delete(
            f"/api/moments/{moment['id']}", {'anonymousId': 'u1'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['id'], moment['id'])

        self.assertEqual(self.client.get('/api/moments').json(), [])

        response = self.client.delete(
            f"/api/replies/{reply['id']}", {'anonymousId': 'u2'}, format='json'
        )
        self.assertEqual(response.status_code, 404)

    def test_list_empty(self):
        response = self.client.get('/api/moments')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_list_newest_first(self):
        self.create_moment('first')
        self.create_moment('second')
        texts = [m['text'] for m in self.client.get('/api/moments').json()]
        self.assertEqual(texts, ['second', 'first'])

    def test_create_fields(self):
        moment = self.create_moment(
            ' hi ', 'u1', displayName='Blue Fox', image='data:image/gif;base64,R0'
        ).json()

        self.assertEqual(moment['text'], 'hi')
        self.assertEqual(moment['anonymousId'], 'u1')
        self.assertEqual(moment['displayName'], 'Blue Fox')
        self.assertEqual(moment['image'], 'data:image/gif;base64,R0')
        self.assertIsInstance(moment['timestamp'], int)

    def test_absent_image_omitted(self):
        moment = self.create_moment().json()
        self.assertNotIn('image', moment)
        self.assertEqual(moment['displayName'], DEFAULT_DISPLAY_NAME)

    def test_create_validation_errors(self):
        cases = [
            ({'anonymousId': 'u1'}, 'Text is required'),
            ({'text': '   ', 'anonymousId': 'u1'}, 'Text is required'),
            ({'text': 'x' * 281, 'anonymousId': 'u1'}, 'Text must be 280 characters or less'),
            ({'text': 'hello'}, 'Anonymous ID is required'),
        ]
        for body, message in cases:
            with self.subTest(body=body):
                response = self.client.post('/api/moments', body, format='json')
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['error'], message)
        self.assertEqual(self.client.get('/api/moments').json(), [])

    def test_non_string_text_is_rejected(self):
        """Numbers are not coerced into text."""
        response = self.client.post(
            '/api/moments', {'text': 12345, 'anonymousId': 'u1'}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Text is required')
        self.assertEqual(self.client.get('/api/moments').json(), [])

    def test_non_string_anonymous_id_is_rejected_everywhere(self):
        """
        A numeric anonymousId fails the same way on create and delete, so
        nobody can end up owning a moment they cannot delete.
        """
        response = self.client.post(
            '/api/moments', {'text': 'hi', 'anonymousId': 42}, format='json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Anonymous ID is required')

        moment = self.create_moment('hi', '42').json()
        response = self.client.delete(
            f"/api/moments/{moment['id']}", {'anonymousId': 42}, format='json'
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.delete(
            f"/api/moments/{moment['id']}", {'anonymousId': '42'}, format='json'
        )
        self.assertEqual(response.status_code, 200)

    def test_non_string_moment_id_is_rejected(self):
        self.create_moment()
        response = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2', 'momentId': 7
        }, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Moment ID is required')
        self.assertEqual(self.client.get('/api/moments').json()[0]['replyCount'], 0)

    def test_non_string_image_is_rejected(self):
        response = self.create_moment('hi', 'u1', image=123)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Image must be a string')

    def test_malformed_json_is_400_with_error(self):
        response = self.client.post(
            '/api/moments', data='{not json', content_type='application/json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_delete_requires_anonymous_id(self):
        moment = self.create_moment().json()
        response = self.client.delete(f"/api/moments/{moment['id']}", {}, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Anonymous ID is required')

    def test_delete_reply_requires_anonymous_id(self):
        moment = self.create_moment().json()
        reply = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2', 'momentId': moment['id']
        }, format='json').json()

        response = self.client.delete(f"/api/replies/{reply['id']}", {}, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Anonymous ID is required')
        self.assertEqual(self.client.get('/api/moments').json()[0]['replyCount'], 1)

    def test_delete_by_non_owner_is_404(self):
        moment = self.create_moment('mine', 'u1').json()
        response = self.client.delete(
            f"/api/moments/{moment['id']}", {'anonymousId': 'u2'}, format='json'
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'error': 'Moment not found or unauthorized'})
        self.assertEqual(len(self.client.get('/api/moments').json()), 1)

    def test_delete_with_query_param(self):
        moment = self.create_moment('mine', 'u1').json()
        response = self.client.delete(f"/api/moments/{moment['id']}?anonymousId=u1")
        self.assertEqual(response.status_code, 200)

    def test_reply_to_unknown_moment_is_404(self):
        response = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2', 'momentId': 'nope'
        }, format='json')
        self.assertEqual(response.status_code, 404)

    def test_reply_without_moment_id_is_400(self):
        response = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2'
        }, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Moment ID is required')

    def test_delete_reply(self):
        moment = self.create_moment().json()
        reply = self.client.post('/api/replies', {
            'text': 'hi', 'anonymousId': 'u2', 'momentId': moment['id']
        }, format='json').json()

        response = self.client.delete(
            f"/api/replies/{reply['id']}", {'anonymousId': 'u1'}, format='json'
        )
        self.assertEqual(response.status_code, 404)

        response = self.client.delete(
            f"/api/replies/{reply['id']}", {'anonymousId': 'u2'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get('/api/moments').json()[0]['replyCount'], 0)

    def test_retention_via_api(self):
        ids = [self.create_moment(f'm{i}').json()['id'] for i in range(6)]
        listed = [m['id'] for m in self.client.get('/api/moments').json()]

        self.assertEqual(len(listed), 5)
        self.assertNotIn(ids[0], listed)

    def test_unexpected_error_is_generic_500(self):
        with patch('moments.views.get_store') as get_store:
            get_store.return_value.moments.list.side_effect = RuntimeError('boom')
            with self.assertLogs('moments.exceptions', level='ERROR'):
                response = self.client.get('/api/moments')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal server error'})

    def test_ping(self):
        response = self.client.get('/api/ping')
        self.assertEqual(response.status_code, 200)
        self.assertIn('MomentFeed', response.json()['message'])

    def test_api_root(self):
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertIn('moments', response.json()['endpoints'])
