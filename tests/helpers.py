from conftest import ADMIN_EMAIL, ADMIN_PASSWORD

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, email, password="secret1", role=None, name="Test User", **extra):
    payload = {"name": name, "email": email, "password": password, **extra}
    if role is not None:
        payload["role"] = role
    resp = client.post("/api/auth/register", json=payload)
    assert resp.status_code == 201, resp.text
    # tests authenticate with bearer headers; a leftover cookie would take precedence
    client.cookies.clear()
    body = resp.json()
    return body["user"], body["token"]


def login(client, email, password):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    client.cookies.clear()
    return resp


def admin_token(client):
    resp = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def image_files(count, field="images"):
    return [(field, (f"photo{i}.png", PNG, "image/png")) for i in range(count)]


def create_product(client, token, images=1, **fields):
    data = {"title": "Desk lamp", "description": "Warm light", "price": "25", **fields}
    return client.post("/api/products", data=data, files=image_files(images) or None, headers=bearer(token))
