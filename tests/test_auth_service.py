import datetime
import os
import sys
import tempfile
import unittest

from werkzeug.security import generate_password_hash

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from auth_service import AuthError, AuthService, SIGNED_IN, SIGNED_OUT, resolve_screen
from config import YamlConfig
from localization import translator


class AuthServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "auth.db")
        self.auth = AuthService(self.db_path)
        translator.set_language("pt-BR")

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _last_code(self, email: str) -> str:
        body = self.auth.outbox.fetch_for_address(email)[-1]["body"]
        return body.rsplit(":", 1)[1].strip()

    def test_sign_up_then_sign_in(self) -> None:
        created = self.auth.sign_up(" Ana@Example.com ", "segredo1")
        self.assertEqual(created.email, "ana@example.com")
        self.assertEqual(self.auth.get_session(created.token).user_id, created.user_id)

        session = self.auth.sign_in("ana@example.com", "segredo1")
        self.assertEqual(session.user_id, created.user_id)
        self.assertNotEqual(session.token, created.token)

    def test_errors_are_translated(self) -> None:
        with self.assertRaises(AuthError) as ctx:
            self.auth.sign_up("ana@example.com", "123")
        self.assertEqual(ctx.exception.user_message, "A senha deve ter pelo menos 6 caracteres.")

        self.auth.sign_up("ana@example.com", "segredo1")
        with self.assertRaises(AuthError) as ctx:
            self.auth.sign_up("ana@example.com", "segredo1")
        self.assertEqual(ctx.exception.user_message, "Este email já está em uso.")

        with self.assertRaises(AuthError) as ctx:
            self.auth.sign_in("ana@example.com", "errada")
        self.assertEqual(ctx.exception.message, "Invalid login credentials")
        self.assertEqual(ctx.exception.user_message, "Email ou senha incorretos.")

    def test_unknown_errors_pass_through(self) -> None:
        self.assertEqual(AuthError("Something odd").user_message, "Something odd")

    def test_reset_code_signs_in(self) -> None:
        user = self.auth.sign_up("bia@example.com", "segredo1")
        self.auth.request_reset_code("bia@example.com")
        mails = self.auth.outbox.fetch_for_address("bia@example.com")
        self.assertEqual(len(mails), 1)
        self.assertEqual(mails[0]["subject"], "Seu código de acesso IronCoach")
        code = self._last_code("bia@example.com")
        self.assertEqual(len(code), 6)
        self.assertTrue(code.isdigit())

        with self.assertRaises(AuthError) as ctx:
            self.auth.verify_reset_code("bia@example.com", "000000" if code != "000000" else "111111")
        self.assertEqual(ctx.exception.user_message, "Código inválido. Verifique e tente novamente.")

        session = self.auth.verify_reset_code("bia@example.com", code)
        self.assertEqual(session.user_id, user.user_id)
        with self.assertRaises(AuthError):
            self.auth.verify_reset_code("bia@example.com", code)

    def test_reset_request_is_throttled(self) -> None:
        self.auth.sign_up("caio@example.com", "segredo1")
        self.auth.request_reset_code("caio@example.com")
        with self.assertRaises(AuthError) as ctx:
            self.auth.request_reset_code("caio@example.com")
        self.assertIn("For security purposes", ctx.exception.message)
        self.assertEqual(
            ctx.exception.user_message,
            "Por segurança, aguarde alguns instantes antes de tentar novamente.",
        )

    def test_reset_for_unknown_email_sends_nothing(self) -> None:
        self.auth.request_reset_code("ninguem@example.com")
        self.assertEqual(self.auth.outbox.fetch_for_address("ninguem@example.com"), [])

    def test_expired_code_is_rejected(self) -> None:
        self.auth.sign_up("duda@example.com", "segredo1")
        past = (datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=1)).isoformat()
        self.auth.codes.store("duda@example.com", generate_password_hash("123456"), past)
        with self.assertRaises(AuthError) as ctx:
            self.auth.verify_reset_code("duda@example.com", "123456")
        self.assertEqual(ctx.exception.user_message, "O código expirou. Solicite um novo.")
        self.assertIsNone(self.auth.codes.fetch("duda@example.com"))

    def test_observers_and_unsubscribe(self) -> None:
        events = []
        unsubscribe = self.auth.on_auth_state_change(
            lambda event, session: events.append((event, session.email if session else None))
        )
        session = self.auth.sign_up("eva@example.com", "segredo1")
        self.auth.sign_out(session.token)
        self.assertIsNone(self.auth.get_session(session.token))
        unsubscribe()
        self.auth.sign_in("eva@example.com", "segredo1")
        self.assertEqual(events, [(SIGNED_IN, "eva@example.com"), (SIGNED_OUT, None)])

    def test_invalid_email(self) -> None:
        with self.assertRaises(AuthError):
            self.auth.sign_in("not-an-email", "segredo1")


class ResolveScreenTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "settings.yaml")
        self.saved_env = os.environ.pop("WORKOUT_DB", None)

    def tearDown(self) -> None:
        if self.saved_env is not None:
            os.environ["WORKOUT_DB"] = self.saved_env
        self.tmp.cleanup()

    def test_screens(self) -> None:
        cfg = YamlConfig(self.path)
        cfg.save({"database_path": "placeholder.db"})
        self.assertEqual(resolve_screen(cfg, None), "setup")

        db_path = os.path.join(self.tmp.name, "auth.db")
        cfg.update(database_path=db_path)
        self.assertEqual(resolve_screen(cfg, None), "auth")

        session = AuthService(db_path).sign_up("fabi@example.com", "segredo1")
        self.assertEqual(resolve_screen(cfg, session), "main")


if __name__ == "__main__":
    unittest.main()
