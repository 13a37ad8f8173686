import io

import pytest

from conftest import create_post
from photoshare.models import Comment, Like


def test_create_post_uploads_image(make_user, fake_media):
    alice = make_user('alice')

    resp = create_post(alice, caption='sunset')

    assert resp.status_code == 201
    body = resp.get_json()
    assert body['imageUrl'] == fake_media.uploaded[0]
    assert body['caption'] == 'sunset'
    assert body['userId'] == alice.user['id']
    assert body['user']['username'] == 'alice'
    assert body['isLiked'] is False
    assert body['_count'] == {'likes': 0, 'comments': 0}


def test_create_post_without_image(make_user):
    alice = make_user('alice')

    resp = alice.post('/api/posts', data={'caption': 'no picture'}, content_type='multipart/form-data')

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Please upload an image'


def test_create_post_rejects_non_image(make_user):
    alice = make_user('alice')
    data = {'image': (io.BytesIO(b'%PDF-1.4'), 'doc.pdf', 'application/pdf')}

    resp = alice.post('/api/posts', data=data, content_type='multipart/form-data')

    assert resp.status_code == 400


def test_create_post_requires_login(client):
    assert create_post(client).status_code == 401


def test_feed_scenario(make_user):
    alice = make_user('alice')
    bob = make_user('bob')
    assert alice.post(f"/api/users/{bob.user['id']}/follow").status_code == 201
    post = create_post(bob, caption='hello').get_json()

    resp = alice.get('/api/posts/feed?page=1')

    assert resp.status_code == 200
    body = resp.get_json()
    assert [p['id'] for p in body['posts']] == [post['id']]
    feed_post = body['posts'][0]
    assert feed_post['caption'] == 'hello'
    assert feed_post['isLiked'] is False
    assert feed_post['_count'] == {'likes': 0, 'comments': 0}
    assert body['currentPage'] == 1
    assert body['totalPages'] == 1
    assert body['totalPosts'] == 1


def test_feed_includes_own_posts_and_excludes_strangers(make_user):
    alice = make_user('alice')
    bob = make_user('bob')
    carol = make_user('carol')
    alice.post(f"/api/users/{bob.user['id']}/follow")

    own = create_post(alice).get_json()
    followed = create_post(bob).get_json()
    create_post(carol)

    posts = alice.get('/api/posts/feed').get_json()['posts']

    assert [p['id'] for p in posts] == [followed['id'], own['id']]


def test_feed_annotates_likes_and_comments(make_user):
    alice = make_user('alice')
    bob = make_user('bob')
    alice.post(f"/api/users/{bob.user['id']}/follow")
    post_id = create_post(bob).get_json()['id']

    alice.post(f'/api/posts/{post_id}/like')
    bob.post(f'/api/posts/{post_id}/like')
    alice.post(f'/api/posts/{post_id}/comments', json={'content': 'nice'})

    post = alice.get('/api/posts/feed').get_json()['posts'][0]

    assert post['isLiked'] is True
    assert post['_count'] == {'likes': 2, 'comments': 1}


@pytest.mark.parametrize('limit', [1, 2, 3, 5, 7, 10])
def test_feed_pages_are_exhaustive_and_disjoint(make_user, limit):
    alice = make_user('alice')
    bob = make_user('bob')
    alice.post(f"/api/users/{bob.user['id']}/follow")
    created = [create_post(author).get_json()['id'] for author in (alice, bob) * 4 + (alice,)]

    seen = []
    page = 1
    while True:
        body = alice.get(f'/api/posts/feed?page={page}&limit={limit}').get_json()
        assert body['currentPage'] == page
        seen.extend(p['id'] for p in body['posts'])
        if page >= body['totalPages']:
            break
        page += 1

    assert seen == list(reversed(created))
    assert body['totalPosts'] == len(created)


def test_feed_page_past_end_is_empty(make_user):
    alice = make_user('alice')
    create_post(alice)

    body = alice.get('/api/posts/feed?page=5').get_json()

    assert body['posts'] == []
    assert body['totalPages'] == 1


@pytest.mark.parametrize('query', ['page=0', 'page=abc', 'limit=-1'])
def test_feed_rejects_bad_pagination(make_user, query):
    alice = make_user('alice')
    assert alice.get(f'/api/posts/feed?{query}').status_code == 400


def test_get_post(make_user):
    alice = make_user('alice')
    post_id = create_post(alice, caption='hi').get_json()['id']
    alice.post(f'/api/posts/{post_id}/like')

    body = alice.get(f'/api/posts/{post_id}').get_json()

    assert body['id'] == post_id
    assert body['isLiked'] is True
    assert body['_count']['likes'] == 1


def test_get_missing_post(make_user):
    alice = make_user('alice')
    resp = alice.get('/api/posts/999')
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Post not found'


def test_like_twice_is_conflict(make_user):
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']

    first = alice.post(f'/api/posts/{post_id}/like')
    second = alice.post(f'/api/posts/{post_id}/like')

    assert first.status_code == 201
    assert first.get_json()['postId'] == post_id
    assert second.status_code == 409
    assert Like.query.filter_by(post_id=post_id).count() == 1


def test_unlike_twice_is_noop(make_user):
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']
    alice.post(f'/api/posts/{post_id}/like')

    assert alice.delete(f'/api/posts/{post_id}/like').status_code == 200
    assert alice.delete(f'/api/posts/{post_id}/like').status_code == 200
    assert Like.query.filter_by(post_id=post_id).count() == 0


def test_like_missing_post(make_user):
    alice = make_user('alice')
    assert alice.post('/api/posts/42/like').status_code == 404
    assert alice.delete('/api/posts/42/like').status_code == 404


def test_delete_post_cascades(make_user, fake_media):
    alice = make_user('alice')
    bob = make_user('bob')
    post = create_post(alice).get_json()
    post_id = post['id']
    bob.post(f'/api/posts/{post_id}/like')
    comment_id = bob.post(f'/api/posts/{post_id}/comments', json={'content': 'wow'}).get_json()['id']

    resp = alice.delete(f'/api/posts/{post_id}')

    assert resp.status_code == 200
    assert fake_media.deleted == [post['imageUrl']]
    assert alice.get(f'/api/posts/{post_id}').status_code == 404
    assert bob.delete(f'/api/posts/{post_id}/comments/{comment_id}').status_code == 404
    assert Like.query.filter_by(post_id=post_id).count() == 0
    assert Comment.query.filter_by(post_id=post_id).count() == 0


def test_delete_post_survives_media_failure(make_user, monkeypatch):
    from photoshare import media

    def failing_delete(url):
        return False

    monkeypatch.setattr(media, 'delete_image', failing_delete)
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']

    assert alice.delete(f'/api/posts/{post_id}').status_code == 200
    assert alice.get(f'/api/posts/{post_id}').status_code == 404


def test_only_owner_deletes_post(make_user):
    alice = make_user('alice')
    bob = make_user('bob')
    post_id = create_post(alice).get_json()['id']

    resp = bob.delete(f'/api/posts/{post_id}')

    assert resp.status_code == 403
    assert alice.get(f'/api/posts/{post_id}').status_code == 200


def test_add_comment(make_user):
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']

    resp = alice.post(f'/api/posts/{post_id}/comments', json={'content': '  first!  '})

    assert resp.status_code == 201
    body = resp.get_json()
    assert body['content'] == 'first!'
    assert body['postId'] == post_id
    assert body['user']['username'] == 'alice'


@pytest.mark.parametrize('payload', [{}, {'content': ''}, {'content': '   '}])
def test_add_empty_comment(make_user, payload):
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']

    resp = alice.post(f'/api/posts/{post_id}/comments', json=payload)

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Comment cannot be empty'


def test_get_comments_paginated_newest_first(make_user):
    alice = make_user('alice')
    post_id = create_post(alice).get_json()['id']
    for text in ('one', 'two', 'three'):
        alice.post(f'/api/posts/{post_id}/comments', json={'content': text})

    first = alice.get(f'/api/posts/{post_id}/comments?limit=2').get_json()
    second = alice.get(f'/api/posts/{post_id}/comments?limit=2&page=2').get_json()

    assert [c['content'] for c in first['comments']] == ['three', 'two']
    assert [c['content'] for c in second['comments']] == ['one']
    assert first['totalPages'] == 2
    assert first['totalComments'] == 3


def test_comment_deletion_rules(make_user):
    alice = make_user('alice')
    bob = make_user('bob')
    carol = make_user('carol')
    post_id = create_post(alice).get_json()['id']
    by_bob = bob.post(f'/api/posts/{post_id}/comments', json={'content': 'a'}).get_json()['id']
    by_carol = carol.post(f'/api/posts/{post_id}/comments', json={'content': 'b'}).get_json()['id']

    # a third party may not delete
    assert carol.delete(f'/api/posts/{post_id}/comments/{by_bob}').status_code == 403
    # the author may
    assert bob.delete(f'/api/posts/{post_id}/comments/{by_bob}').status_code == 200
    # and so may the post owner
    assert alice.delete(f'/api/posts/{post_id}/comments/{by_carol}').status_code == 200


def test_delete_comment_on_wrong_post(make_user):
    alice = make_user('alice')
    first = create_post(alice).get_json()['id']
    second = create_post(alice).get_json()['id']
    comment_id = alice.post(f'/api/posts/{first}/comments', json={'content': 'x'}).get_json()['id']

    resp = alice.delete(f'/api/posts/{second}/comments/{comment_id}')

    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Comment does not belong to the post'
