# validate.py - Runs the behavior scenarios end to end through the CLI
# Automated validation for hvresult
import os
import subprocess
import sys
import tempfile
import shutil

ROOT = os.path.dirname(os.path.abspath(__file__))
CLI = os.path.join(ROOT, "cli.py")
PC = 0
FC = 0
RES = []


def rc(args, cwd=ROOT):
    r = subprocess.run(
        [sys.executable, CLI] + args,
        capture_output=True, text=True, cwd=cwd
    )
    return r.returncode, r.stdout.strip(), r.stderr.strip()


def git(d, *args):
    r = subprocess.run(["git"] + list(args), capture_output=True, text=True, cwd=d)
    if r.returncode != 0:
        raise RuntimeError("git %s failed: %s" % (" ".join(args), r.stderr.strip()))
    return r.stdout.strip()


def ck(a, e):
    if e in a:
        return True, ""
    return False, "want %r in %r" % (e, a)


def ckn(a, e):
    if e not in a:
        return True, ""
    return False, "unwanted %r in %r" % (e, a)


def zc(c):
    if c == 0:
        return True, ""
    return False, "exit %d, expected 0" % c


def nzc(c):
    if c != 0:
        return True, ""
    return False, "exit 0, expected nonzero"


def rep(sid, desc, ok, diag=""):
    global PC, FC
    if ok:
        PC += 1
    else:
        FC += 1
    RES.append((sid, desc, "PASS" if ok else "FAIL", diag))
    tag = "[PASS]" if ok else "[FAIL]"
    print("  %s %s: %s" % (tag, sid, desc))
    if not ok and diag:
        for ln in diag.strip().split("\n"):
            print("         " + ln)


def _a(p, d, ok, m, prefix=""):
    if ok:
        return p, d
    return False, d + [prefix + m if prefix else m]


def pol(*rules):
    out = []
    for path, caps in rules:
        out.append('path "%s" {\n  capabilities = [%s]\n}\n' % (path, ", ".join('"%s"' % c for c in caps)))
    return "\n".join(out)


class TR:
    """Scratch policy repository: commit a base, then edit the working tree."""

    def __init__(self):
        self.d = None
        self.base = None

    def __enter__(self):
        self.d = tempfile.mkdtemp(prefix="hvr_")
        git(self.d, "init", "-q")
        git(self.d, "config", "user.name", "validate")
        git(self.d, "config", "user.email", "validate@localhost")
        git(self.d, "config", "commit.gpgsign", "false")
        return self

    def __exit__(self, *a):
        if self.d and os.path.exists(self.d):
            shutil.rmtree(self.d, ignore_errors=True)

    def w(self, rel, text):
        p = os.path.join(self.d, rel)
        os.makedirs(os.path.dirname(p), exist_ok=True)
        with open(p, "w") as f:
            f.write(text)

    def rm(self, rel):
        os.remove(os.path.join(self.d, rel))

    def ident(self, rel, field, names):
        self.w(rel, '{"%s": [%s]}\n' % (field, ", ".join('"%s"' % n for n in names)))

    def commit(self):
        git(self.d, "add", "--all")
        git(self.d, "commit", "-q", "-m", "base")
        self.base = git(self.d, "rev-parse", "HEAD")

    def diff(self):
        return rc(["diff", "--directory", self.d, "--compare-ref", self.base])

    def rsop(self, ident, fmt="hcl", rev=None):
        cmd = ["rsop", ident, "--directory", self.d, "--format", fmt]
        if rev is not None:
            cmd += ["--revision", rev]
        return rc(cmd)


def t81():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/before", pol(("modified", ["create"])))
        r.w("sys/policies/acl/after", pol(("modified", ["create", "delete"]), ("new", ["sudo"])))
        r.ident("auth/gcp/role/r", "policies", ["before"])
        r.commit()
        r.ident("auth/gcp/role/r", "policies", ["after"])
        c, o, e = r.diff()
        p, d = _a(p, d, *zc(c))
        p, d = _a(p, d, *ck(o, "2 effective changes to `auth/gcp/role/r`."))
        p, d = _a(p, d, *ck(o, "| delete"))
        p, d = _a(p, d, *ck(o, "| sudo"))
        p, d = _a(p, d, *ckn(o, "➖"))
        rep("8.1", "Rebinding to a Broader Policy Shows Only Additions", p, "\n".join(d))


def t82():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/before", pol(("modified", ["create", "list"])))
        r.w("sys/policies/acl/before2", pol(("removed", ["sudo", "subscribe"])))
        r.ident("auth/gcp/role/r", "policies", ["before", "before2"])
        r.commit()
        r.w("sys/policies/acl/before", pol(("modified", ["create"])))
        r.ident("auth/gcp/role/r", "policies", ["before"])
        c, o, e = r.diff()
        p, d = _a(p, d, *zc(c))
        p, d = _a(p, d, *ck(o, "3 effective changes to `auth/gcp/role/r`."))
        p, d = _a(p, d, *ck(o, "`before2`"))
        p, d = _a(p, d, *ckn(o, "➕"))
        rep("8.2", "Dropping a Policy Shows Only Removals", p, "\n".join(d))


def t83():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/polA", pol(("p1", ["update"])))
        r.w("sys/policies/acl/polB", pol(("p1", ["update"])))
        r.w("sys/policies/acl/polC", pol(("p2", ["update"])))
        r.ident("auth/gcp/role/r", "token_policies", ["polC"])
        r.commit()
        r.w("sys/policies/acl/polA", pol(("p1", ["read"])))
        r.w("sys/policies/acl/polB", pol(("p1", ["read"])))
        r.ident("auth/gcp/role/r", "token_policies", ["polA", "polB"])
        c, o, e = r.diff()
        p, d = _a(p, d, *ck(o, "3 effective changes to `auth/gcp/role/r`."))
        p, d = _a(p, d, *ck(o, "`polA` , `polB`"))
        rep("8.3", "Change Count Sums Policy Attributions", p, "\n".join(d))


def t84():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/default", pol(("secret/*", ["read"])))
        r.ident("auth/gcp/roles/r1", "policies", ["default"])
        r.w("secret/data/x", "unrelated\n")
        r.commit()
        r.w("secret/data/x", "still unrelated\n")
        c, o, e = r.diff()
        p, d = _a(p, d, *zc(c))
        p, d = _a(p, d, *ckn(o, "effective"), "Unrelated: ")
        r.ident("auth/gcp/roles/r1", "policies", [])
        c, o, e = r.diff()
        p, d = _a(p, d, *ck(o, "1 effective change to `auth/gcp/roles/r1`."), "Identity: ")
        r.ident("auth/gcp/roles/r1", "policies", ["default"])
        r.w("sys/policies/acl/default", pol(("secret/*", ["read"]), ("secret/x", ["list"])))
        c, o, e = r.diff()
        p, d = _a(p, d, *ck(o, "1 effective change to `auth/gcp/roles/r1`."), "Policy: ")
        rep("8.4", "Changed Files Are Classified by Path", p, "\n".join(d))


def t85():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/P", pol(("secret/a", ["read"])))
        r.ident("auth/gcp/role/gone", "policies", ["P"])
        r.ident("auth/gcp/role/stays", "policies", ["P"])
        r.commit()
        r.rm("auth/gcp/role/gone")
        r.w("sys/policies/acl/P", pol(("secret/a", ["read", "list"])))
        c, o, e = r.diff()
        p, d = _a(p, d, *zc(c))
        p, d = _a(p, d, *ck(o, "1 effective change to `auth/gcp/role/gone`."))
        p, d = _a(p, d, *ck(o, "1 effective change to `auth/gcp/role/stays`."))
        rep("8.5", "Deleted Identity Loses Everything", p, "\n".join(d))


def t86():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/P", pol(("secret/a", ["read"])))
        r.w("sys/policies/acl/Q", pol(("secret/a", ["read"])))
        r.ident("auth/gcp/role/r", "policies", ["P"])
        r.commit()
        r.ident("auth/gcp/role/r", "policies", ["Q"])
        c, o, e = r.diff()
        p, d = _a(p, d, *ck(o, "0 effective changes to `auth/gcp/role/r` (policy assignment change is a no-op)."))
        p, d = _a(p, d, *ckn(o, "| Path"))
        rep("8.6", "Equivalent Rebinding Is a No-Op", p, "\n".join(d))


def t87():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/admin", pol(("secret/prod", ["read", "update"])))
        r.w("sys/policies/acl/lockout", pol(("secret/prod", ["deny"])))
        r.ident("auth/gcp/role/r", "policies", ["admin", "lockout"])
        r.commit()
        c, o, e = r.rsop("auth/gcp/role/r")
        p, d = _a(p, d, *zc(c))
        p, d = _a(p, d, *ck(o, '"deny", # from: lockout'))
        p, d = _a(p, d, *ckn(o, '"read"'))
        rep("8.7", "Deny Collapses Other Grants", p, "\n".join(d))


def t88():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/P", pol(("secret/a", ["read"])))
        r.ident("auth/gcp/role/r", "policies", ["P"])
        r.commit()
        r.w("sys/policies/acl/P", pol(("secret/a", ["list"])))
        c, o, e = r.rsop("auth/gcp/role/r", "table", r.base)
        p, d = _a(p, d, *ck(o, "| read"), "Base: ")
        c, o, e = r.rsop("auth/gcp/role/r", "table")
        p, d = _a(p, d, *ck(o, "| list"), "Working: ")
        rep("8.8", "RSoP at a Revision", p, "\n".join(d))


def t89():
    with TR() as r:
        d, p = [], True
        r.w("sys/policies/acl/P", pol(("secret/a", ["read"])))
        r.ident("auth/gcp/role/r", "policies", ["P"])
        r.commit()
        r.w("sys/policies/acl/P", 'path "secret/a" {\n  capabilities = ["read"\n')
        c, o, e = r.diff()
        p, d = _a(p, d, *nzc(c))
        p, d = _a(p, d, *ck(e, "Error: sys/policies/acl/P:"))
        c, o, e = r.rsop("auth/gcp/role/missing")
        p, d = _a(p, d, *nzc(c), "Missing: ")
        p, d = _a(p, d, *ck(e, "Error: "), "Missing: ")
        rep("8.9", "Malformed Policy and Missing Identity Are Errors", p, "\n".join(d))


def t810():
    with TR() as r:
        d, p = [], True
        r.w("README.md", "no policies here\n")
        r.commit()
        c, o, e = r.diff()
        p, d = _a(p, d, *nzc(c))
        p, d = _a(p, d, *ck(e, "wrong directory specified?"))
        rep("8.10", "Diff Requires a Policy Directory", p, "\n".join(d))


def main():
    print("=" * 70)
    print("hvresult -- Validation Suite")
    print("Behavior scenarios through the command line")
    print("=" * 70)
    print()
    ts = [t81, t82, t83, t84, t85, t86, t87, t88, t89, t810]
    for f in ts:
        try:
            f()
        except Exception as x:
            sid = f.__name__[1:]
            sid = sid[0] + "." + sid[1:]
            rep(sid, "EXCEPTION: %s" % x, False, str(x))
    print()
    print("=" * 70)
    print("Results: %d/%d passed, %d failed" % (PC, PC + FC, FC))
    print("=" * 70)
    sys.exit(1 if FC > 0 else 0)


if __name__ == "__main__":
    main()
