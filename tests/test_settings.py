import pytest

from school_companion import settings
from school_companion.errors import ValidationError


class TestProfile:
    def test_empty_by_default(self, store, run):
        assert run(settings.load_profile(store)) == {}
        assert settings.profile_display({}) == {"name": "Student", "details": "Complete your profile"}

    def test_save_and_display(self, store, run):
        saved = run(settings.save_profile(store, {
            "first_name": " Ada ", "last_name": "Lovelace", "year": 4, "section": "B",
            "school": "Liceo Galilei", "unexpected": "dropped",
        }))
        assert saved == {"first_name": "Ada", "last_name": "Lovelace", "year": "4",
                         "section": "B", "school": "Liceo Galilei"}
        assert run(settings.load_profile(store)) == saved

        shown = settings.profile_display(saved)
        assert shown["name"] == "Ada Lovelace"
        assert shown["details"] == "Year 4 B • Liceo Galilei"

    def test_names_required(self, store, run):
        with pytest.raises(ValidationError):
            run(settings.save_profile(store, {"first_name": "Ada", "last_name": " "}))
        assert run(settings.load_profile(store)) == {}

    def test_photo_survives_profile_edit(self, store, run):
        url = run(settings.save_profile_photo(store, b"\x89PNG", "image/png"))
        assert url == "data:image/png;base64,iVBORw=="

        run(settings.save_profile(store, {"first_name": "Ada", "last_name": "Lovelace"}))
        assert run(settings.load_profile(store))["photo"] == url

    @pytest.mark.parametrize("data,mime", [(b"", "image/png"), (b"%PDF", "application/pdf")])
    def test_bad_photo(self, store, run, data, mime):
        with pytest.raises(ValidationError):
            run(settings.save_profile_photo(store, data, mime))


class TestDarkMode:
    def test_toggle_persists(self, file_store, data_file, run):
        from school_companion.store import open_store

        assert run(settings.get_dark_mode(file_store)) is False
        assert run(settings.toggle_dark_mode(file_store)) is True

        reopened = run(open_store(data_file))
        assert run(settings.get_dark_mode(reopened)) is True
        assert run(settings.toggle_dark_mode(reopened)) is False
