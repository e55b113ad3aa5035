# splai-worker

A worker agent for a distributed task platform. The worker registers itself
with a control plane, sends periodic heartbeats, polls for task assignments,
executes each task locally and reports the outcome back together with the
URI of the JSON artifact it produced. It needs nothing beyond the Python
standard library.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Running the agent

```
splai-worker
```

The command takes no options apart from `--help`. It registers the worker
(exiting with status 1 if registration fails), then polls and sends
heartbeats until it receives SIGINT or SIGTERM. All settings come from
environment variables; unset or empty variables fall back to the defaults
below, and numbers that do not parse also fall back to their default.

| Variable | Default |
| --- | --- |
| `SPLAI_WORKER_ID` | `worker-local` |
| `SPLAI_CONTROL_PLANE_URL` | `http://localhost:8080` |
| `SPLAI_API_TOKEN` | empty (sent as `X-SPLAI-Token` when set) |
| `SPLAI_MAX_PARALLEL_TASKS` | `2` (the `max_tasks` asked for per poll) |
| `SPLAI_HEARTBEAT_SECONDS` | `5` |
| `SPLAI_POLL_MILLIS` | `1500` |
| `SPLAI_ARTIFACT_ROOT` | `/tmp/splai-artifacts` |
| `SPLAI_MODEL_CACHE_DIR` | `<artifact root>/models` |
| `SPLAI_ARTIFACT_BACKEND` | `local` (or `minio`) |
| `SPLAI_MINIO_ENDPOINT`, `SPLAI_MINIO_ACCESS_KEY`, `SPLAI_MINIO_SECRET_KEY` | empty |
| `SPLAI_MINIO_BUCKET` | `splai-artifacts` |
| `SPLAI_MINIO_USE_SSL` | `false` |
| `SPLAI_OLLAMA_BASE_URL`, `SPLAI_VLLM_BASE_URL`, `SPLAI_LLAMACPP_BASE_URL` | empty |
| `SPLAI_REMOTE_API_BASE_URL`, `SPLAI_REMOTE_API_KEY` | empty |
| `SPLAI_WORKER_BACKENDS` | empty (comma separated list) |
| `SPLAI_EMBEDDING_BACKEND` | `local` |
| `SPLAI_EMBEDDING_MODEL` | `nomic-embed-text` |
| `SPLAI_EMBEDDING_DIMENSION` | `384` |
| `SPLAI_EMBEDDING_HTTP_RETRIES` | `2` |
| `SPLAI_RETRIEVAL_BACKEND` | `local` |
| `SPLAI_RETRIEVAL_BASE_URL`, `SPLAI_RETRIEVAL_API_KEY` | empty |
| `SPLAI_RETRIEVAL_HTTP_RETRIES` | `2` |

Example:

```
SPLAI_WORKER_ID=worker-a \
SPLAI_CONTROL_PLANE_URL=http://localhost:8080 \
SPLAI_API_TOKEN=token \
SPLAI_OLLAMA_BASE_URL=http://localhost:11434 \
splai-worker
```

At registration the worker advertises the backends listed in
`SPLAI_WORKER_BACKENDS` plus those whose base URL is set.

## Task types

Each task carries a type and a mapping of string inputs. The worker writes
the result to `<artifact root>/<job id>/<task id>/output.json` and reports
`artifact://<job id>/<task id>/output.json` (or
`artifact://s3/<bucket>/<job id>/<task id>/output.json` with the MinIO
backend, after uploading the file to that S3-compatible store).

- `llm_inference` – sends `prompt` to one of the `ollama`, `vllm`,
  `llama.cpp` or `remote_api` backends. With `_install_model_if_missing`
  set, the model is first fetched into the model cache.
- `model_download` – fetches `model` from Hugging Face using `hf`,
  `huggingface-cli` or a shallow `git clone`, whichever is found first.
- `tool_execution` – runs `command` (or `script`) with `/bin/sh` in a
  per-task directory under `<artifact root>/sandboxes`, with a minimal
  environment and a 30 second time limit.
- `embedding` – embeds `text` or the list in `texts_json`, either with a
  local hashing embedder or through Ollama, vLLM or a remote
  OpenAI-compatible API.
- `retrieval` – ranks documents from `documents_json` (or newline separated
  `documents`) against `query` with a local hybrid vector/lexical score,
  honouring metadata filters, or delegates to a remote retrieval service.
- `aggregation` – merges the outputs of dependency tasks
  (`dep:<task>:output_uri` inputs) and inline `items_json` items into one
  report with conflicts, highlights and per-field provenance, optionally
  checking `required_fields`.

## Using the package from Python

```python
from splai_worker.config import from_env
from splai_worker.executor import Executor, Task

config = from_env({"SPLAI_ARTIFACT_ROOT": "/tmp/artifacts"})
executor = Executor(config)
uri = executor.run(Task(job_id="job-1", task_id="t1", type="embedding",
                        input={"text": "hello"}))
```

`Executor.run(task)` executes a `Task` and returns its artifact URI,
raising an exception (`splai_worker.inputs.TaskError` for bad inputs)
when the task fails. `splai_worker.runtime.Runtime` drives the
poll/execute/report loop; its `poll_and_run()` handles one poll and
returns the reports it sent. `splai_worker.heartbeat.HeartbeatClient`
sends heartbeats, `splai_worker.registration.register` announces the
worker, and `splai_worker.api_types` holds the wire types with
`to_payload` and `from_payload` for converting them to and from JSON.

## What the package does not do

- It is only the worker: there is no control plane, scheduler or API
  server here.
- It exports no metrics or traces; failures are only written to the log.
- Assignments from one poll are executed one after another, not in
  parallel.
- Host CPU and memory figures in heartbeats come from `/proc` and are
  reported as 0 where that is not available.
- The tool sandbox is a private directory, a reduced environment and a
  time limit; it does not isolate the command from the rest of the host.