from django.contrib.auth import get_user_model
from django.test import TestCase

User = get_user_model()


class UserManagerTests(TestCase):
    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Buyer@Example.COM", password="pass1234")
        self.assertEqual(user.email, "Buyer@example.com")
        self.assertTrue(user.check_password("pass1234"))
        self.assertEqual(user.role, "customer")
        self.assertFalse(user.is_staff)

    def test_create_user_without_password_is_unusable(self):
        user = User.objects.create_user(email="guest@example.com")
        self.assertFalse(user.has_usable_password())

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="  ", password="pass1234")

    def test_create_superuser_is_staff_admin(self):
        admin = User.objects.create_superuser(email="root@example.com", password="pass1234")
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)
        self.assertEqual(admin.role, "admin")

    def test_short_name_falls_back_to_email(self):
        user = User.objects.create_user(email="a@example.com", full_name="Jane Wanjiru")
        self.assertEqual(user.get_short_name(), "Jane")
        bare = User.objects.create_user(email="b@example.com")
        self.assertEqual(bare.get_short_name(), "b@example.com")
