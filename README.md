# distlab

Building blocks for experimenting with distributed systems in plain Python,
with no dependencies beyond the standard library.

## What is in the package

- **`distlab.labgob`** – `LabEncoder` and `LabDecoder` write and read values
  (numbers, strings, bytes, lists, tuples, sets, dicts, dataclasses and enums)
  as length-prefixed, self-describing records on a binary stream, so the
  reader never shares an object with the writer. Dataclass fields whose names
  start with an underscore are not sent, and each such class is reported once.
  Decoding into a target that already holds non-default values is reported
  too. `error_count()` tells how many reports have been made. `register()` and
  `register_name()` give a class a wire name.
- **`distlab.labrpc`** – an in-process RPC network. A `Network` holds client
  end-points (`make_end`, `delete_end`, `connect`, `enable`) and servers
  (`add_server`, `delete_server`). `reliable(False)` delays and sometimes drops
  requests and replies, `long_reordering(True)` sometimes holds replies back,
  and `long_delays(True)` makes calls on disabled end-points take up to seven
  seconds to fail. `get_count`, `get_total_count` and `get_total_bytes` report
  traffic. A `Server` groups `Service` objects; a service exposes every public
  method of its receiver that takes exactly one argument, reached as
  `"ClassName.method"`, and the method's return value is the reply.
  `ClientEnd.call()` returns the reply or raises `RPCError` when none arrived.
- **`distlab.models`** – a model of a key/value store for checking recorded
  histories: `KvOp`, `KvInput`, `KvOutput`, `Operation`, and the functions
  `partition` (split a history by key), `init_state`, `step` and
  `describe_operation`.
- **`distlab.kvsrv`** – `KVServer`, a single key/value server with versioned
  puts (a non-zero version must match, else `ErrNoKey` or `ErrVersion`) and
  appends that return the previous value and are applied at most once per
  client request. `Clerk` talks to it and retries every 100 ms until it gets a
  reply.
- **`distlab.kvsrv_cluster`** – `Cluster` puts a server and any number of
  clerks on a simulated network, counts RPCs and operations between `begin()`
  and `end()`, and can be used as a context manager.
- **`distlab.kvraft_client`** – a `Clerk` for a replicated key/value service:
  it sends each request to the replicas in turn, starting with the last known
  leader, until one replies with something other than `ErrWrongLeader`.
- **MapReduce**
  - `distlab.mr_rpc` – the task messages and a Unix-socket RPC transport
    (`call`, `serve`, `coordinator_sock`).
  - `distlab.mr_coordinator` – `Coordinator` hands out map tasks, then reduce
    tasks, makes failed tasks pending again, and reports `done()` once all
    have completed.
  - `distlab.mr_worker` – `worker(mapf, reducef)` asks for tasks, runs them
    and reports back; intermediate files are `mr-<map>-<reduce>` and outputs
    `mr-out-<reduce>`, bucketed with `ihash`.
  - `distlab.mrapps` – applications, each with `map_func` and `reduce_func`:
    `wc` (word count), `indexer` (inverted index), `crash` (exits the process
    or stalls at random), `nocrash`, `early_exit`, `jobcount`, `mtiming` and
    `rtiming` (check that tasks run in parallel).
  - `distlab.mr_sequential` – `load_app(name)` and `run_sequential(...)` run a
    job in one process.

## Installation

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install ".[test]"
pytest
```

## Using the simulated network

```python
from distlab.labrpc import Network, Server, Service
from distlab.kvsrv import start_kv_server, Clerk

net = Network()
server = Server()
server.add_service(Service(start_kv_server()))
net.add_server(0, server)

end = net.make_end("client-1")
net.connect("client-1", 0)
net.enable("client-1", True)

clerk = Clerk(end)
clerk.put("k", "v")
print(clerk.append("k", "w"))   # previous value: "v"
print(clerk.get("k"))           # "vw"

net.cleanup()
```

`Cluster` does the same wiring for you:

```python
from distlab.kvsrv_cluster import Cluster

with Cluster(unreliable=False) as cluster:
    clerk = cluster.make_client()
    clerk.put("x", "1")
    assert clerk.get("x") == "1"
```

## Running MapReduce

Word count over a set of text files, all in one process; the result is
written to `mr-out-0`:

```
distlab-mrsequential wc pg-*.txt
```

The distributed version uses one coordinator and any number of workers,
talking over a Unix socket under `/var/tmp`, so it needs a POSIX system.
Start the coordinator with the input files (it uses ten reduce tasks):

```
distlab-mrcoordinator pg-*.txt
```

and, in other terminals, one or more workers naming the application:

```
distlab-mrworker wc
```

Each reduce task writes its output to `mr-out-<n>`; the coordinator exits once
every task has completed, and workers exit when told to or when the
coordinator can no longer be reached.

## What the package does not do

- There is no replicated key/value server and no consensus implementation:
  `distlab.kvraft_client.Clerk` is only the client side and needs servers that
  answer `KVServer.get` and `KVServer.put_append`.
- `distlab.models` describes the key/value model only; no linearizability
  checker or history visualiser is included.
- Applications are loaded by name from `distlab.mrapps`; arbitrary plug-in
  files cannot be loaded.