"""Tests for team kind/subtype classification and external naming."""

from dataclasses import replace

from teamforge.provisioning import TeamClassifier


class TestClassify:

    def test_known_kind(self, settings):
        cls = TeamClassifier(settings).classify("Competition", "CTF")

        assert cls.kind == "competition"
        assert cls.subtype == "ctf"
        assert cls.parent_group_name == "competition-team"
        assert cls.warnings == []

    def test_unknown_kind_falls_back(self, settings):
        cls = TeamClassifier(settings).classify("research")

        assert cls.kind == "development"
        assert cls.parent_group_name == "development-team"
        assert cls.warnings == ["Unknown team kind 'research', using 'development'"]

    def test_missing_kind_falls_back(self, settings):
        assert TeamClassifier(settings).classify(None).kind == "development"

    def test_unknown_subtype_dropped(self, settings):
        cls = TeamClassifier(settings).classify("competition", "purple")

        assert cls.subtype is None
        assert len(cls.warnings) == 1

    def test_custom_parent_template(self, settings):
        custom = replace(settings, parent_group_template="teams-{parent_team_type}")

        assert TeamClassifier(custom).classify("development").parent_group_name == "teams-development"


class TestNaming:

    def test_group_and_folder_names(self, settings):
        classifier = TeamClassifier(settings)

        assert classifier.group_name("competition", "alpha") == "competition-team-alpha"
        assert classifier.folder_name("competition", "alpha") == "competition-team/alpha"
