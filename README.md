# ffwebapi

A small HTTP service that accepts ffmpeg jobs and runs them in the background.
At most a set number of ffmpeg processes run at once. The service then serves
the finished output files for download.

A client sends an ffmpeg argument string, an input and an output extension.
The input can be a URL or a local path. The service downloads or copies the
input into its own temporary directory and puts that file's path in place of
the `${INPUT_MEDIA}` placeholder. It adds the output path as the last argument
and runs ffmpeg. The client can then poll the job, cancel it and fetch the
result.

## Installing

    pip install .

To install what the test suite needs as well:

    pip install .[test]

## Running

The package installs one command:

    ffwebapi

It takes no options other than `--help`. At start-up it does the following:

1. Loads the configuration.
2. Checks that the ffmpeg binary can be found on `PATH`.
3. Creates a private temporary directory (`ffwebapi_*`) for inputs and outputs.
4. Starts the task workers.
5. Serves HTTP on `0.0.0.0` at the configured port.

`SIGINT` or `SIGTERM` stops the server gracefully. A second signal uses the
default handler. If the configuration cannot be loaded, ffmpeg cannot be
found, or the port cannot be bound, the command logs the error and exits with
status 1.

## Configuration

Settings come from three places. From lowest to highest priority:

1. Built-in defaults.
2. A YAML file named `ffwebapi_config.yaml`, `ffwebapi_config.yml` or `ffwebapi_config`, in the current directory or in `/etc/ffwebapi/`. The first file found is used. Its keys are case-insensitive.
3. Environment variables prefixed with `FFWEBAPI_`, for example `FFWEBAPI_PORT=9999`. A variable set to an empty string is ignored.

| Key                     | Default        | Meaning                                                   |
|-------------------------|----------------|-----------------------------------------------------------|
| `FF_BIN`                | `ffmpeg`       | ffmpeg executable, looked up on `PATH`                    |
| `FF_TIMEOUT`            | `12m3s`        | Maximum run time of one job                               |
| `OUTPUT_LOCAL_LIFETIME` | `1h23m`        | How long finished output files are kept                   |
| `MAX_INPUT_SIZE`        | `200MB`        | Largest accepted input file                               |
| `MAX_CONCURRENCY`       | `1`            | Number of jobs run at the same time                       |
| `THROTTLE_CPU`          | `50.0`         | Percentage of CPU that must be idle before a job starts   |
| `THROTTLE_FREEMEM`      | `200MB`        | Free memory needed before a job starts                    |
| `THROTTLE_FREEDISK`     | `200MB`        | Free disk space in the temporary directory needed before a job starts |
| `AUTH_ENABLE`           | `false`        | Require a bearer token on `/api/v1` routes                |
| `AUTH_KEY`              | built-in value | Bearer token expected when auth is enabled                |
| `PORT`                  | `8080`         | Listening port                                            |
| `BASE`                  | (empty)        | Base URL used in download links; the request's host if empty |

Value formats:

- **Durations** use the `1h2m3s` form, with units `ns`, `us` (or `µs`), `ms`, `s`, `m` and `h`. Fractions are allowed, as in `1.5h`.
- **Sizes** are a whole number with an optional suffix: `B`, `K`/`KB`/`KiB`, `M`/`MB`/`MiB`, `G`, `T`, `P` or `E`. Suffixes are case-insensitive and count in powers of 1024, so `200MB` is 209715200 bytes. A plain integer is a number of bytes.
- **Booleans** accept `true`/`false`, `t`/`f` and `1`/`0`.

If you turn `AUTH_ENABLE` on, set `AUTH_KEY` to your own value.

## HTTP API

`GET /health` answers `{"status": "ok"}`.

All other routes live under `/api/v1`. When authentication is enabled, these
routes need an `Authorization: Bearer token` header that carries the
configured key. Without it they answer `401`.

| Method  | Path                            | Purpose                                          |
|---------|---------------------------------|--------------------------------------------------|
| `POST`  | `/api/v1/tasks`                 | Submit a job; answers `202 {"taskId": ...}`      |
| `GET`   | `/api/v1/tasks`                 | List all jobs                                    |
| `GET`   | `/api/v1/tasks/<taskId>`        | One job's status, with a download URL once it is completed |
| `PATCH` | `/api/v1/tasks/<taskId>/cancel` | Cancel a queued or running job                   |
| `GET`   | `/api/v1/files/<filename>`      | Download a finished output file                  |
| `POST`  | `/api/v1/call`                  | Synchronous calls; always answers `501`          |

### Submitting a job

A job submission is a JSON body:

    POST /api/v1/tasks
    Content-Type: application/json

    {"command": "-i ${INPUT_MEDIA} -vcodec copy",
     "inputMedia": "https://media.example.com/clip.mkv",
     "outputExt": "mp4"}

`command` and `outputExt` are required strings.

The command is split the way a shell would split it, but no shell ever runs
it. Validation rules:

- `${INPUT_MEDIA}` must appear as an argument on its own.
- No other argument may contain any of `|`, `&`, `;`, `` ` ``, `$`, `(`, `)`, `<` or `>`.
- Do not name an output file. The service adds `<taskId>_output.<outputExt>`, in its temporary directory, as the last argument.

A malformed or rejected command answers `400`.

`inputMedia` may be an `http://` or `https://` URL, or a local file path. A
`data:` URI fails the job. So does an input larger than `MAX_INPUT_SIZE`.

### Job status

A job is reported like this:

    {"id": "...", "status": "completed",
     "outputPath": "...", "downloadUrl": "http://host:8080/api/v1/files/..._output.mp4",
     "createdAt": "...", "startedAt": "...", "completedAt": "...",
     "ffmpegOutput": "..."}

- Timestamps are ISO 8601 in UTC. `startedAt` and `completedAt` are `null` until they are set.
- `outputPath`, `downloadUrl`, `error` and `ffmpegOutput` are left out when they are empty.
- `status` moves from `queued` to `processing`, and ends as `completed`, `failed` or `canceled`. Failed and canceled jobs carry an `error` message.

When a job starts, the service checks the machine's idle CPU, free memory and
free disk space against the throttle settings. If any of them falls short, the
job is refused and marked failed. The CPU check samples usage for one second.

A job that runs past `FF_TIMEOUT` is marked canceled. Completed output files
are deleted once they are older than `OUTPUT_LOCAL_LIFETIME`.

Cancelling a job that is already finished, or an unknown job, answers `400`.
Asking for a file that does not exist answers `404`, as does a file name with
a path in it.

## Using it as a library

- `ffwebapi.config.load(environ, config_paths)` builds a `Config`. Both arguments may be omitted; they default to `os.environ` and the standard search paths. `parse_duration` and `parse_byte_size` are the value parsers it uses. Bad values raise `ConfigError`.
- `ffwebapi.security.split_command` and `sanitize_and_validate_args` split and check a command string. They raise `CommandError`.
- `ffwebapi.task.Task` holds one job. `Task.to_dict()` gives its public JSON view. `Status` lists the job states.
- `ffwebapi.manager.Manager(cfg, runner)` queues tasks and drives any object with a `run(ctx, task)` method. It has these methods:
  - `start`, `stop`
  - `submit`, `get`, `list`
  - `cancel`
  - `get_file_path`
- `Manager` failures raise `TaskError`. The runner receives a `RunContext` and should raise `TaskCanceled` when the context is done.
- `ffwebapi.runner.Runner(cfg)` is the ffmpeg-backed runner. Creating it sets `cfg.temp_dir`. Its failures raise `RunnerError`.
- `ffwebapi.api.create_app(manager, cfg)` returns the Flask application that serves the routes above.
- `ffwebapi.server.main()` is the `ffwebapi` command.

## What it does not do

- Jobs are kept in memory only. They are lost when the process exits, and finished jobs are never removed from the list; only their output files are deleted.
- There is no synchronous conversion endpoint: `/api/v1/call` always answers `501`.
- `data:` URI inputs are not supported.
- The server speaks plain HTTP; put it behind a TLS-terminating proxy if needed.