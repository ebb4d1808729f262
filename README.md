# nginx-automake

A small web service that takes the output of `nginx -V` from an existing
server, reads its version and `configure` arguments, and builds a fresh nginx
binary with the same options plus any extra modules you choose.

Builds run in a background queue of worker threads. Each job downloads the
nginx source with `curl`, unpacks it with `tar`, fetches the requested modules
with `git clone --depth 1`, runs `./configure` and `make`, and keeps the
resulting binary for download. A history of finished builds (up to 200
entries, newest first) is kept in a JSON file.

## Requirements

The machine running the service needs `curl`, `tar`, `git`, `make` and a C
toolchain able to compile nginx.

## Install

```
pip install .
```

## Running

```
nginx-automake --modules-config config/modules.json --index-html web/index.html
```

Both options shown are the defaults, relative to the current directory:

- `--modules-config` is a JSON list of preset modules. Each object may have
  `name`, `repo`, `description`, `flag` (`add-module` or `add-dynamic-module`)
  and `path`. A relative `path` is looked up under `MODULES_DIR`; a preset with
  a `path` that does not exist is cloned from its `repo` if it has one, and
  fails the build otherwise. A preset without a `path` is cloned into the job's
  work directory.
- `--index-html` is the HTML page served at `/`.

The service is further configured through environment variables:

| Variable        | Default                | Meaning                                          |
|-----------------|------------------------|--------------------------------------------------|
| `PORT`          | `8080`                 | Port to listen on (`:8080` form is accepted too) |
| `MAX_WORKERS`   | `2`                    | Number of builds run at the same time            |
| `MODULES_DIR`   | `./modules`            | Directory holding pre-downloaded modules         |
| `WORKDIR`       | `/tmp/nginx-build`     | Root directory for build work trees              |
| `BUILD_TIMEOUT` | `90m`                  | Time limit per build, e.g. `30m`, `1h30m`        |
| `HISTORY_FILE`  | `./data/history.json`  | Where the build history is stored                |
| `GIN_MODE`      | (unset)                | `debug` runs the Flask server in debug mode      |

Invalid numbers or durations fall back to the defaults. Durations accept the
units `ns`, `us` (or `µs`), `ms`, `s`, `m` and `h`; a timeout of zero or less
means no limit.

## HTTP API

| Method | Path                          | Purpose                                         |
|--------|-------------------------------|-------------------------------------------------|
| GET    | `/`                           | The page given by `--index-html`                |
| GET    | `/api/modules`                | Preset modules, sorted by name                  |
| POST   | `/api/parse`                  | Parse `{"output": "..."}` from `nginx -V`       |
| POST   | `/api/build`                  | Start a build; returns `{"id": "..."}`          |
| GET    | `/api/jobs/<id>`              | Job status, steps, logs and generated script    |
| GET    | `/api/jobs/<id>/download`     | Download the binary of a successful job         |
| GET    | `/api/history`                | Past builds, newest first                       |
| GET    | `/api/history/<id>/download`  | Download the binary of a past build             |
| GET    | `/api/health`                 | `{"status": "ok"}`                              |

A build request looks like this:

```json
{
  "output": "nginx version: nginx/1.24.0\nconfigure arguments: --with-http_ssl_module",
  "moduleNames": ["headers-more"],
  "customModules": [
    {"name": "my-module", "repo": "https://git.example.com/my-module.git", "flag": "add-dynamic-module"}
  ],
  "targetVersion": "1.26.1"
}
```

`targetVersion` is optional; when given, that nginx version is built instead of
the one found in the output. Custom modules must come from an `https://`
repository, their names may contain only letters, digits, `.`, `_` and `-`, and
their flag is `add-module` (the default) or `add-dynamic-module`. Any
`--add-module` or `--add-dynamic-module` options in the parsed arguments are
dropped and replaced by the selected modules.

Each job goes through five steps (parse, source, modules, compile, artifact),
each reported as `pending`, `running`, `success` or `failed`. A job also
carries a bash script (`script`) that reproduces the same build by hand. Job
state is held in memory and lost when the service stops; only the history
file persists.

## What is not included

The package ships no web page and no preset module list. Supply your own
files through `--index-html` and `--modules-config`; the service will not
start without them.

## Using the library

The parsing and validation parts can be used on their own:

```python
from nginx_automake.parser import parse_nginx_v, valid_version, ParseError
from nginx_automake.registry import validate_custom_module, module_flag, ModuleError

result = parse_nginx_v(
    "nginx version: nginx/1.24.0\n"
    "configure arguments: --prefix=/etc/nginx --with-http_ssl_module\n"
)
print(result.to_dict())

valid_version("1.24.0")   # True

module = validate_custom_module("my-module", "https://git.example.com/my-module.git", "")
module_flag(module)       # "--add-module"
```

`parse_nginx_v` raises `ParseError` when the version or the configure arguments
are missing, and `validate_custom_module` raises `ModuleError` for an invalid
module.

`nginx_automake.app.create_app(registry, queue, history, index_html)` returns
the Flask application, for running it under another WSGI server; build the
`registry` with `load_registry`, the `queue` with `BuildQueue` (call its
`start()`), and the `history` with `HistoryStore`.