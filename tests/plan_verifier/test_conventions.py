from services.plan_verifier.app.domain.conventions import ConventionExtractor, path_distance
from services.plan_verifier.app.domain.indexer import build_index
from services.plan_verifier.app.domain.types import CaseStyle, ClaimKind, SymbolKind


def test_path_distance_counts_directory_hops():
    assert path_distance("src/app", "src/app") == 0
    assert path_distance("src/app", "src/lib") == 2
    assert path_distance("", "src/app") == 2


def test_file_precedents_prefer_shared_suffix(services_codebase):
    extractor = ConventionExtractor(build_index(services_codebase))

    evidence = extractor.find_precedents(ClaimKind.naming, "services/UserAuth.service.ts", symbol_kind=SymbolKind.file)

    assert [item.path for item in evidence] == [
        "services/notification.service.ts",
        "services/payment.service.ts",
        "services/user.service.ts",
    ]
    assert all(item.style is CaseStyle.flat for item in evidence)


def test_evidence_is_capped(make_tree):
    root = make_tree("many", {f"pkg/module_{n}.py": f"def handler_{n}():\n    pass\n" for n in range(8)})
    extractor = ConventionExtractor(build_index(root), evidence_cap=5)

    assert len(extractor.find_precedents(ClaimKind.naming, "pkg/new_module.py")) == 5
    assert len(extractor.find_precedents(ClaimKind.naming, "handleRequest", symbol_kind=SymbolKind.function)) == 5


def test_symbol_precedents_prefer_the_claimed_language(make_tree):
    root = make_tree(
        "mixed",
        {
            "api/handlers.py": "def load_user():\n    pass\ndef save_user():\n    pass\ndef drop_user():\n    pass\n",
            "web/client.ts": (
                "export function loadUser() {}\nexport function saveUser() {}\nexport function dropUser() {}\n"
            ),
        },
    )
    extractor = ConventionExtractor(build_index(root))

    evidence = extractor.find_precedents(
        ClaimKind.naming, "fetchUser", near="web/profile.ts", symbol_kind=SymbolKind.function
    )
    assert {item.snippet for item in evidence} == {"loadUser", "saveUser", "dropUser"}

    evidence = extractor.find_precedents(
        ClaimKind.naming, "fetch_user", near="api/users.py", symbol_kind=SymbolKind.function
    )
    assert {item.snippet for item in evidence} == {"load_user", "save_user", "drop_user"}


def test_reference_precedents_list_exact_matches_before_variants(python_codebase):
    extractor = ConventionExtractor(build_index(python_codebase))

    exact = extractor.find_precedents(ClaimKind.reference, "get_user")
    variant = extractor.find_precedents(ClaimKind.reference, "getUser")

    assert exact[0].snippet == "get_user"
    assert exact[0].line == 2
    assert [item.snippet for item in variant] == ["get_user"]


def test_blank_hint_yields_no_evidence(python_codebase):
    extractor = ConventionExtractor(build_index(python_codebase))

    assert extractor.find_precedents(ClaimKind.naming, "  ") == ()
