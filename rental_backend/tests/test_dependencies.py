import unittest

from rental_backend.auth import InMemoryAuthClient, PostgresAuthClient
from rental_backend.config import Settings
from rental_backend.db import InMemoryDbClient, PostgresDbClient
from rental_backend.dependencies import build_backend, build_services
from rental_backend.storage import InMemoryStorageClient


class DependencyWiringTests(unittest.TestCase):
    def test_in_memory_backend(self):
        settings = Settings(
            use_in_memory_backends=True,
            database_url="postgresql://ignored",
            signed_url_expires_seconds=90,
        )
        backend = build_backend(settings)
        self.assertIsInstance(backend.auth, InMemoryAuthClient)
        self.assertIsInstance(backend.db, InMemoryDbClient)
        self.assertIsInstance(backend.storage, InMemoryStorageClient)

        services = build_services(backend, settings)
        self.assertIs(services.customers.db, backend.db)
        self.assertEqual(services.images.signed_url_expires_seconds, 90)

    def test_sql_backend(self):
        settings = Settings(database_url="sqlite+pysqlite:///:memory:")
        backend = build_backend(settings)
        self.assertIsInstance(backend.auth, PostgresAuthClient)
        self.assertIsInstance(backend.db, PostgresDbClient)
        self.assertIsInstance(backend.storage, InMemoryStorageClient)

    def test_services_share_backend_state(self):
        settings = Settings(use_in_memory_backends=True)
        backend = build_backend(settings)
        services = build_services(backend, settings)
        backend.auth.create_user("clerk@rental.test", "password1")
        backend.auth.sign_in_with_password("clerk@rental.test", "password1")

        created = services.customers.create_customer({"contact_person": "Nisha"})

        self.assertEqual(created.value.created_by, backend.auth.get_user().id)
        self.assertTrue(services.auth.get_current_session().value)


if __name__ == "__main__":
    unittest.main()
