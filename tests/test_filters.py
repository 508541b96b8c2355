from dataclasses import replace

from rsync_deployer.filters.filters import (
    CATCH_ALL,
    Exclude,
    Include,
    ReferenceIgnoreFile,
    build_filter_rules,
    build_restriction_rules,
    expand_restriction,
    to_rsync_args,
)


def test_file_restriction_emits_one_pair_per_level(project):
    (project / "src" / "app").mkdir(parents=True)
    (project / "src" / "app" / "main.py").write_text("print(1)\n")

    rules = build_restriction_rules(["src/app/main.py"], str(project))

    includes = [rule for rule in rules if isinstance(rule, Include)]
    excludes = [rule for rule in rules if isinstance(rule, Exclude)]
    assert len(includes) == 3
    assert len(excludes) == 3 + 1
    assert rules[-1] == CATCH_ALL
    assert rules == [
        Include("/src/app/main.py"),
        Include("/src/app"),
        Include("/src"),
        Exclude("/src/app/main.py/*"),
        Exclude("/src/app/*"),
        Exclude("/src/*"),
        Exclude("/*"),
    ]


def test_directory_restriction_keeps_its_contents(project):
    (project / "assets" / "css").mkdir(parents=True)

    rules = build_restriction_rules(["assets/css"], str(project))

    assert rules[0] == Include("/assets/css/***")
    assert Include("/assets") in rules
    assert rules[-1] == CATCH_ALL


def test_shared_ancestors_are_not_repeated(project):
    (project / "src").mkdir()
    (project / "src" / "a.py").write_text("a")
    (project / "src" / "b.py").write_text("b")

    rules = build_restriction_rules(["src/a.py", "src/b.py"], str(project))

    assert rules.count(Include("/src")) == 1
    assert rules.count(Exclude("/src/*")) == 1
    # every include is evaluated before any exclude
    last_include = max(i for i, rule in enumerate(rules) if isinstance(rule, Include))
    first_exclude = min(i for i, rule in enumerate(rules) if isinstance(rule, Exclude))
    assert last_include < first_exclude


def test_no_restriction_means_full_tree(options):
    options = replace(options, ignore=("node_modules", "*.log"))

    rules = build_filter_rules(options)

    assert not [rule for rule in rules if isinstance(rule, Include)]
    assert CATCH_ALL not in rules
    assert Exclude("node_modules") in rules
    assert Exclude("*.log") in rules


def test_restriction_matching_nothing_is_an_empty_transfer(options, project):
    options = replace(options, path="missing/*.txt")

    rules = build_filter_rules(options, cwd=str(project))

    assert rules[-1] == CATCH_ALL
    assert not [rule for rule in rules if isinstance(rule, Include)]


def test_wildcards_are_expanded_relative_to_cwd(project):
    (project / "docs").mkdir()
    (project / "docs" / "a.md").write_text("a")
    (project / "docs" / "b.md").write_text("b")
    (project / "docs" / "c.txt").write_text("c")

    paths = expand_restriction("*.md", str(project), cwd=str(project / "docs"))

    assert paths == ["docs/a.md", "docs/b.md"]


def test_multiple_space_separated_entries(project):
    (project / "a.txt").write_text("a")
    (project / "b.txt").write_text("b")

    paths = expand_restriction("a.txt b.txt a.txt", str(project), cwd=str(project))

    assert paths == ["a.txt", "b.txt"]


def test_entries_outside_the_project_are_dropped(project, tmp_path):
    (tmp_path / "outside.txt").write_text("x")

    assert expand_restriction("../outside.txt", str(project), cwd=str(project)) == []


def test_ignore_file_is_referenced_first(options, project):
    (project / ".deployignore").write_text("+ /vendor/keep/\n")

    rules = build_filter_rules(options)

    assert rules[0] == ReferenceIgnoreFile(str(project / ".deployignore"))


def test_default_excludes_protect_config_and_backups(options):
    rules = build_filter_rules(options)

    assert Exclude(".git") in rules
    assert Exclude("/deploy.json") in rules
    assert Exclude("/.backups") in rules


def test_backup_root_outside_the_tree_is_not_excluded(options):
    options = replace(options, backup_path="/srv/backups")

    rules = build_filter_rules(options)

    assert not [rule for rule in rules if isinstance(rule, Exclude) and "backups" in rule.pattern]


def test_rules_to_rsync_args():
    args = to_rsync_args([ReferenceIgnoreFile("/p/.deployignore"), Include("/src"), Exclude("/*")])

    assert args == ["--filter=merge /p/.deployignore", "--include=/src", "--exclude=/*"]
