import io
import uuid

from fastapi.testclient import TestClient
from PIL import Image

from blog.main import app

client = TestClient(app)


def _title(prefix='Post'):
    return f'{prefix} {uuid.uuid4().hex[:8]}'


def _post(title=None, **overrides):
    body = {
        'title': title or _title(),
        'excerpt': 'A short summary.',
        'post_type': 'core',
        'content': '# Heading\n\nSome **markdown** body.',
        'tags': ['python', 'fastapi'],
        'stacks': [],
    }
    body.update(overrides)
    return body


def _png_bytes():
    buf = io.BytesIO()
    Image.new('RGB', (8, 8), (10, 120, 200)).save(buf, format='PNG')
    return buf.getvalue()


def _upload(c, name='pic.png'):
    r = c.post('/api/files/upload', files={'file': (name, _png_bytes(), 'image/png')})
    assert r.status_code == 201, r.text
    return r.json()


def test_create_post_builds_slug_and_tags(signup):
    c, user = signup('writer')
    title = _title('Spring Boot 시작하기')
    r = c.post('/api/my/posts', json=_post(title))
    assert r.status_code == 201, r.text
    data = r.json()
    assert data['slug'] == title.lower().replace(' ', '-')
    assert data['status'] == 'published'
    assert data['tags'] == ['python', 'fastapi']
    assert data['author_nickname'] == user['nickname']
    assert data['content'].startswith('# Heading')


def test_create_requires_auth():
    assert TestClient(app).post('/api/my/posts', json=_post()).status_code == 401


def test_duplicate_title_is_field_error(signup):
    c, _ = signup('dup')
    body = _post()
    assert c.post('/api/my/posts', json=body).status_code == 201
    r = c.post('/api/my/posts', json=body)
    assert r.status_code == 400
    assert 'title' in r.json()['errors']


def test_slug_collision_gets_numeric_suffix(signup):
    c, _ = signup('slug')
    base = _title('Slug Test')
    first = c.post('/api/my/posts', json=_post(base)).json()
    second = c.post('/api/my/posts', json=_post(base + '!')).json()
    assert second['slug'] == first['slug'] + '-2'


def test_html_in_content_is_rejected(signup):
    c, _ = signup('html')
    r = c.post('/api/my/posts', json=_post(content='hello <div>world</div>'))
    assert r.status_code == 400
    assert 'content' in r.json()['errors']
    # angle brackets that are not tags pass
    r = c.post('/api/my/posts', json=_post(content='use `a < b` and List<String>'))
    assert r.status_code == 201


def test_validation_limits(signup):
    c, _ = signup('limits')
    r = c.post('/api/my/posts', json=_post(title='x' * 51))
    assert r.status_code == 400
    assert 'title' in r.json()['errors']
    r = c.post('/api/my/posts', json=_post(post_type='novel'))
    assert r.status_code == 400
    assert 'post_type' in r.json()['errors']
    r = c.post('/api/my/posts', json=_post(title='!!!'))
    assert r.status_code == 400
    assert 'title' in r.json()['errors']


def test_unknown_stacks_are_ignored(signup, admin_client):
    c, _ = signup('stk')
    known = f'stack{uuid.uuid4().hex[:8]}'
    assert admin_client.post('/api/admin/stacks', json={'name': known, 'stack_group': 'framework'}).status_code == 201
    r = c.post('/api/my/posts', json=_post(stacks=[known, 'does-not-exist']))
    assert r.status_code == 201
    assert r.json()['stacks'] == [known]


def test_thumbnail_and_content_files(signup):
    c, _ = signup('files')
    thumb = _upload(c)
    inline = _upload(c, 'inline.png')
    content = f"Look:\n\n::file[id={inline['id']} path={inline['path']}]::\n"
    r = c.post('/api/my/posts', json=_post(thumbnail_file_id=thumb['id'], content=content))
    assert r.status_code == 201, r.text
    assert r.json()['thumbnail_path'] == thumb['url']

    r = c.post('/api/my/posts', json=_post(thumbnail_file_id=987654))
    assert r.status_code == 404
    r = c.post('/api/my/posts', json=_post(content='::file[id=987654]::'))
    assert r.status_code == 404


def test_edit_view_and_update(signup):
    c, _ = signup('edit')
    created = c.post('/api/my/posts', json=_post(tags=['a', 'b'])).json()
    slug = created['slug']
    r = c.get(f'/api/my/posts/{slug}/edit')
    assert r.status_code == 200
    assert r.json()['content'] == created['content']

    # tags omitted (null) are kept
    new_title = _title('Renamed')
    r = c.put(f'/api/my/posts/{slug}', json={
        'title': new_title,
        'excerpt': 'Changed excerpt.',
        'post_type': 'essay',
        'content': 'New body.',
    })
    assert r.status_code == 200, r.text
    updated = r.json()
    assert updated['slug'] != slug
    assert updated['slug'] == new_title.lower().replace(' ', '-')
    assert updated['post_type'] == 'essay'
    assert updated['tags'] == ['a', 'b']

    # an explicit empty list clears them
    r = c.put(f"/api/my/posts/{updated['slug']}", json={
        'title': new_title,
        'excerpt': 'Changed excerpt.',
        'post_type': 'essay',
        'content': 'New body.',
        'tags': [],
    })
    assert r.status_code == 200
    assert r.json()['tags'] == []
    assert c.get(f'/api/my/posts/{slug}/edit').status_code == 404


def test_update_title_conflict(signup):
    c, _ = signup('conf')
    first = c.post('/api/my/posts', json=_post()).json()
    second = c.post('/api/my/posts', json=_post()).json()
    r = c.put(f"/api/my/posts/{second['slug']}", json=_post(first['title']))
    assert r.status_code == 409
    assert 'title' in r.json()['errors']


def test_update_thumbnail_replace_and_remove(signup):
    c, _ = signup('thumb')
    first = _upload(c)
    second = _upload(c)
    post = c.post('/api/my/posts', json=_post(thumbnail_file_id=first['id'])).json()
    body = _post(post['title'], thumbnail_file_id=second['id'])
    r = c.put(f"/api/my/posts/{post['slug']}", json=body)
    assert r.json()['thumbnail_path'] == second['url']
    body = _post(post['title'], remove_thumbnail=True)
    r = c.put(f"/api/my/posts/{post['slug']}", json=body)
    assert r.json()['thumbnail_path'] is None


def test_other_users_cannot_touch_my_post(signup):
    owner, _ = signup('own')
    intruder, _ = signup('intr')
    post = owner.post('/api/my/posts', json=_post()).json()
    assert intruder.get(f"/api/my/posts/{post['slug']}/edit").status_code == 404
    assert intruder.put(f"/api/my/posts/{post['slug']}", json=_post(post['title'])).status_code == 404
    assert intruder.delete(f"/api/my/posts/{post['slug']}").status_code == 404


def test_soft_delete_and_restore(signup):
    c, user = signup('del')
    post = c.post('/api/my/posts', json=_post()).json()
    slug = post['slug']
    public_url = f"/api/posts/{user['nickname']}/{slug}"
    assert client.get(public_url).status_code == 200

    assert c.post(f'/api/my/posts/{slug}/restore').status_code == 400
    assert c.delete(f'/api/my/posts/{slug}').status_code == 204
    assert client.get(public_url).status_code == 404
    assert c.delete(f'/api/my/posts/{slug}').status_code == 400

    # the author still sees it for editing and in the deleted list
    edit = c.get(f'/api/my/posts/{slug}/edit').json()
    assert edit['status'] == 'deleted'
    assert edit['deleted_at'] is not None
    deleted = c.get('/api/my/posts/deleted').json()
    assert [p['slug'] for p in deleted['content']] == [slug]
    mine = c.get('/api/my/posts').json()
    assert mine['total_elements'] == 0

    r = c.post(f'/api/my/posts/{slug}/restore')
    assert r.status_code == 200
    assert r.json()['status'] == 'published'
    assert r.json()['deleted_at'] is None
    assert client.get(public_url).status_code == 200


def test_my_posts_filters_and_paging(signup):
    c, _ = signup('list')
    marker = uuid.uuid4().hex[:10]
    c.post('/api/my/posts', json=_post(post_type='core'))
    c.post('/api/my/posts', json=_post(post_type='essay'))
    c.post('/api/my/posts', json=_post(post_type='essay', content=f'body mentions {marker}'))

    page = c.get('/api/my/posts', params={'size': 2}).json()
    assert page['total_elements'] == 3
    assert page['total_pages'] == 2
    assert page['current_page'] == 0
    assert page['has_next'] is True
    assert page['has_previous'] is False
    assert len(page['content']) == 2

    second = c.get('/api/my/posts', params={'size': 2, 'page': 1}).json()
    assert len(second['content']) == 1
    assert second['has_next'] is False
    assert second['has_previous'] is True

    essays = c.get('/api/my/posts', params={'post_type': 'essay'}).json()
    assert essays['total_elements'] == 2
    # content is searchable in the author's own listing
    found = c.get('/api/my/posts', params={'keyword': marker}).json()
    assert found['total_elements'] == 1

    assert c.get('/api/my/posts', params={'size': 0}).status_code == 400
    assert c.get('/api/my/posts', params={'size': 101}).status_code == 400
