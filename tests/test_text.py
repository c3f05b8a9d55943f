"""Tests for text normalization and intent matching."""

import pytest

from ispbot.domain.text import (
    extract_digits,
    is_filler,
    is_greeting,
    is_menu_command,
    mentions,
    needs_human,
    normalize_text,
)


class TestNormalizeText:
    def test_strips_accents_lowercases_and_trims(self):
        assert normalize_text("  Olá, Bom Dia!  ") == "ola, bom dia!"

    def test_cedilla_and_tilde(self):
        assert normalize_text("CONEXÃO lançada") == "conexao lancada"

    def test_none_and_empty(self):
        assert normalize_text(None) == ""
        assert normalize_text("   ") == ""


class TestExtractDigits:
    def test_formatted_cpf(self):
        assert extract_digits("meu cpf é 111.444.777-35") == "11144477735"

    def test_no_digits(self):
        assert extract_digits("sem numero") == ""
        assert extract_digits(None) == ""


class TestMenuCommand:
    @pytest.mark.parametrize("text", ["8", "menu", "voltar ao menu", "menu principal"])
    def test_menu_commands(self, text):
        assert is_menu_command(text)

    @pytest.mark.parametrize("text", ["88", "18", "oi", "1"])
    def test_not_menu_commands(self, text):
        assert not is_menu_command(text)


class TestGreeting:
    @pytest.mark.parametrize("text", ["oi", "ola", "bom dia", "oi, tudo bem?", "boa tarde!", "ola."])
    def test_greetings(self, text):
        assert is_greeting(text)

    @pytest.mark.parametrize("text", ["oitenta", "boa", "quero pagar", "olaf"])
    def test_not_greetings(self, text):
        assert not is_greeting(text)


class TestFillerAndHuman:
    @pytest.mark.parametrize("text", ["ok", "obrigado", "valeu", "tudo bem", "kkk", "👍"])
    def test_fillers(self, text):
        assert is_filler(text)

    def test_filler_must_be_exact(self):
        assert not is_filler("ok quero o boleto")

    @pytest.mark.parametrize(
        "text",
        ["preciso falar com alguem", "quero um atendente", "nao entendi nada", "preciso de ajuda"],
    )
    def test_needs_human(self, text):
        assert needs_human(text)

    def test_needs_human_on_normalized_accents(self):
        assert needs_human(normalize_text("Não entendi"))

    def test_mentions(self):
        assert mentions("quero pagar no pix", "pix")
        assert not mentions("quero boleto", "pix")
