import pytest


def _deck(client, name='Spanish'):
    resp = client.post('/decks', json={'name': name, 'description': 'Basics'})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _card(client, deck_id, front, back='answer'):
    resp = client.post(f'/decks/{deck_id}/cards', json={'front': front, 'back': back})
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get('/health').json() == {'backend': 'running', 'database': 'connected'}


class TestDeckRoutes:

    def test_create_and_list(self, client):
        deck = _deck(client)
        assert deck['name'] == 'Spanish'
        assert deck['statistics'] == {'total_cards': 0, 'due_cards': 0, 'last_studied': None}

        listed = client.get('/decks').json()
        assert [d['id'] for d in listed] == [deck['id']]

    def test_duplicate_name_is_conflict(self, client):
        _deck(client)
        resp = client.post('/decks', json={'name': 'Spanish'})
        assert resp.status_code == 409
        assert resp.json() == {
            'success': False,
            'error': 'Deck with name "Spanish" already exists',
            'code': 'DUPLICATE_NAME',
        }

    def test_blank_name_is_validation_error(self, client):
        resp = client.post('/decks', json={'name': '   '})
        assert resp.status_code == 400
        assert resp.json()['code'] == 'INVALID_NAME'

    def test_get_with_cards(self, client):
        deck = _deck(client)
        _card(client, deck['id'], 'hola', 'hello')
        body = client.get(f"/decks/{deck['id']}").json()
        assert body['statistics']['total_cards'] == 1
        assert [c['front'] for c in body['cards']] == ['hola']

    def test_get_missing(self, client):
        resp = client.get('/decks/99')
        assert resp.status_code == 404
        assert resp.json()['code'] == 'DECK_NOT_FOUND'

    def test_search(self, client):
        _deck(client, 'Spanish')
        _deck(client, 'German')
        assert [d['name'] for d in client.get('/decks', params={'q': 'germ'}).json()] == ['German']

    def test_update(self, client):
        deck = _deck(client)
        resp = client.patch(f"/decks/{deck['id']}", json={'name': 'Español'})
        assert resp.status_code == 200
        assert resp.json()['name'] == 'Español'

    def test_delete_needs_confirmation(self, client):
        deck = _deck(client)
        _card(client, deck['id'], 'uno')
        assert client.delete(f"/decks/{deck['id']}").status_code == 400

        resp = client.delete(f"/decks/{deck['id']}", params={'confirm': 'true'})
        assert resp.json() == {'deleted_deck_id': deck['id'], 'deleted_card_count': 1}
        assert client.get(f"/decks/{deck['id']}").status_code == 404


class TestCardRoutes:

    def test_create_defaults(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'hola', 'hello')
        assert card['easiness_factor'] == 2.5
        assert card['interval_days'] == 1
        assert card['repetition_count'] == 0
        assert card['next_review_date'] is not None

    def test_new_cards_are_due(self, client):
        deck = _deck(client)
        _card(client, deck['id'], 'hola')
        due = client.get(f"/decks/{deck['id']}/cards", params={'due_only': 'true'}).json()
        assert len(due) == 1

    def test_bulk(self, client):
        deck = _deck(client)
        resp = client.post(f"/decks/{deck['id']}/cards/bulk", json={'cards': [
            {'front': 'a', 'back': '1'}, {'front': 'b', 'back': '2'},
        ]})
        assert resp.status_code == 201
        assert len(client.get(f"/decks/{deck['id']}/cards").json()) == 2

    def test_update_schedule_out_of_range(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'hola')
        resp = client.patch(f"/cards/{card['id']}", json={'easiness_factor': 3.4})
        assert resp.status_code == 400
        assert resp.json()['code'] == 'INVALID_EASINESS_FACTOR'

    def test_update_interval_past_limit(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'hola')
        resp = client.patch(f"/cards/{card['id']}", json={'interval_days': 3_000_000})
        assert resp.status_code == 400
        assert resp.json()['code'] == 'INVALID_INTERVAL_DAYS'

    def test_update_text(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'hola')
        resp = client.patch(f"/cards/{card['id']}", json={'back': 'hi'})
        assert resp.status_code == 200
        assert resp.json()['back'] == 'hi'

    def test_delete(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'hola')
        assert client.delete(f"/cards/{card['id']}", params={'confirm': 'true'}).status_code == 200
        assert client.get(f"/cards/{card['id']}").status_code == 404


class TestImportRoutes:

    def test_import_text(self, client):
        deck = _deck(client)
        text = "\n".join(f"word{i}: meaning {i}" for i in range(8))
        resp = client.post(f"/decks/{deck['id']}/import/text", json={'text': text})
        assert resp.status_code == 201
        # capped by MAX_IMPORT_CARDS in the test config
        assert len(resp.json()) == 5

    def test_import_pdf_rejects_other_files(self, client):
        deck = _deck(client)
        resp = client.post(
            f"/decks/{deck['id']}/import/pdf",
            files={'file': ('notes.txt', b'hello', 'text/plain')},
        )
        assert resp.status_code == 400
        assert resp.json()['code'] == 'INVALID_FILE'


class TestStudyRoutes:

    def test_review_loop(self, client):
        deck = _deck(client)
        cards = [_card(client, deck['id'], f) for f in ('uno', 'dos', 'tres')]

        session = client.post(f"/decks/{deck['id']}/sessions", json={'session_type': 'review'}).json()
        again = client.post(f"/decks/{deck['id']}/sessions").json()
        assert again['id'] == session['id']

        queue = client.get(f"/decks/{deck['id']}/queue").json()
        assert sorted(c['id'] for c in queue) == sorted(c['id'] for c in cards)

        first = client.post(f"/sessions/{session['id']}/reviews", json={
            'card_id': cards[0]['id'], 'response': 'easy', 'response_time_ms': 900,
        })
        assert first.status_code == 201, first.text
        body = first.json()
        assert body['card']['interval_days'] == 3
        assert body['card']['easiness_factor'] == pytest.approx(2.6)
        assert body['card']['repetition_count'] == 1
        assert body['session']['cards_studied'] == 1

        client.post(f"/sessions/{session['id']}/reviews", json={'card_id': cards[1]['id'], 'response': 'hard'})
        client.post(f"/sessions/{session['id']}/reviews", json={'card_id': cards[2]['id'], 'response': 'easy'})

        stats = client.get(f"/sessions/{session['id']}/stats").json()
        assert stats == {'total_cards': 3, 'correct_cards': 2, 'accuracy': 66.67}
        progress = client.get(f"/sessions/{session['id']}/progress").json()
        assert progress['average_response_time'] == 900

        done = client.post(f"/sessions/{session['id']}/complete")
        assert done.status_code == 200
        assert done.json()['completed_at'] is not None

        late = client.post(f"/sessions/{session['id']}/reviews", json={'card_id': cards[0]['id'], 'response': 'easy'})
        assert late.status_code == 409
        assert late.json()['code'] == 'SESSION_COMPLETED'
        assert client.get(f"/decks/{deck['id']}/sessions/active").json() is None

    def test_duplicate_review(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'uno')
        session = client.post(f"/decks/{deck['id']}/sessions").json()
        payload = {'card_id': card['id'], 'response': 'easy'}
        assert client.post(f"/sessions/{session['id']}/reviews", json=payload).status_code == 201
        resp = client.post(f"/sessions/{session['id']}/reviews", json=payload)
        assert resp.status_code == 409
        assert resp.json()['code'] == 'DUPLICATE_REVIEW'

    def test_unknown_response_value(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'uno')
        session = client.post(f"/decks/{deck['id']}/sessions").json()
        resp = client.post(f"/sessions/{session['id']}/reviews", json={'card_id': card['id'], 'response': 'good'})
        assert resp.status_code == 400
        assert resp.json()['success'] is False

    def test_review_past_interval_limit_is_tagged_conflict(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'uno')
        patched = client.patch(f"/cards/{card['id']}", json={'easiness_factor': 3.0, 'interval_days': 36500})
        assert patched.status_code == 200, patched.text

        session = client.post(f"/decks/{deck['id']}/sessions").json()
        resp = client.post(f"/sessions/{session['id']}/reviews", json={'card_id': card['id'], 'response': 'easy'})
        assert resp.status_code == 409
        assert resp.json()['success'] is False
        assert resp.json()['code'] == 'INTERVAL_LIMIT_EXCEEDED'

    def test_abandon(self, client):
        deck = _deck(client)
        session = client.post(f"/decks/{deck['id']}/sessions").json()
        assert client.delete(f"/sessions/{session['id']}").status_code == 200
        assert client.get(f"/sessions/{session['id']}").status_code == 404
        assert client.post(f"/sessions/{session['id']}/complete").status_code == 404

    def test_card_history(self, client):
        deck = _deck(client)
        card = _card(client, deck['id'], 'uno')
        session = client.post(f"/decks/{deck['id']}/sessions").json()
        client.post(f"/sessions/{session['id']}/reviews", json={'card_id': card['id'], 'response': 'hard'})
        history = client.get(f"/cards/{card['id']}/history").json()
        assert history['total_reviews'] == 1
        assert history['correct_reviews'] == 0
        assert [s['id'] for s in client.get(f"/decks/{deck['id']}/sessions").json()] == [session['id']]
