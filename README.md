# intellilb

Building blocks for a priority-aware HTTP load balancer, plus tools to
exercise one: a simulated backend server and several traffic generators.

## What is inside

- **Configuration** (`intellilb.config`): `load(path)` reads a JSON file,
  `parse_config(data)` parses JSON text; both fill in defaults
  (`apply_defaults`) and check the result (`validate`). A flat `servers`
  list with no `services` is wrapped into a `default` service, and `web` and
  `dashboard` entrypoints are derived from `listen_port` and
  `dashboard_port` when no entrypoints are given (`web` becomes `https` when
  `tls.enabled` is set). Malformed JSON, wrongly typed values and a backend
  URL that appears in more than one service raise `ConfigError`; a missing
  file raises the usual `OSError`. `Config.to_dict()` gives the
  configuration back with the file's key names.
- **Selection algorithms** (`intellilb.algorithms`), all taking
  `select(candidates, stats, priority)` with `stats` a mapping of URL to
  `ServerStats`:
  - `WeightedScore`: scores servers by average latency and active
    connections. `HIGH` priority weighs latency 0.8 and load 0.2, other
    priorities 0.6 and 0.4; the configured weight multiplies the score.
  - `RoundRobin`: takes the candidates in turn.
  - `LeastConnections`: picks the server with the fewest active connections.
  - `Canary`: smooth weighted round robin, where weights are fixed traffic
    shares (weights 90 and 10 give a 90/10 split).
- **Circuit breaker** (`intellilb.breaker`): `Breaker(threshold,
  recovery_timeout)` moves between `State.CLOSED`, `State.OPEN` and
  `State.HALF_OPEN`. `is_open()` only reads the state; `can_send()` moves an
  open breaker to half open once the recovery timeout has passed. A failure
  while half open trips it again straight away.
- **Server selection** (`intellilb.selector`): `Router(servers, stats,
  breakers, algorithm)` drops unhealthy servers, servers whose circuit is
  open and any excluded URLs, asks the algorithm for a choice and raises
  `NoServerError` when nothing is left. `stats` is a callable returning the
  current `ServerStats` mapping.
- **Health monitoring** (`intellilb.monitor`): `Monitor(servers, metrics,
  breakers)` polls each server's health endpoint on its own thread, with its
  own interval, timeout and expected status code, and feeds the results into
  the circuit breakers and into `metrics`, an object with `set_health`,
  `set_circuit_state` and `clear_latencies` methods.
- **Entrypoints** (`intellilb.entrypoint`): `EntryPoint(name, config,
  handler, middlewares)` serves a WSGI application on the configured address
  (HTTPS when configured), wrapped in its middlewares; `Manager` registers
  entrypoints and starts or shuts them down together. `chain(...)` composes
  middlewares, and `resolve_middlewares(names, builder)` builds them by name
  through a builder object with a `build(name)` method, raising
  `MiddlewareError` when one cannot be built.
- **Hot reload** (`intellilb.hotreload`): `Watcher(path, on_reload)` watches
  the configuration file and calls `on_reload(path)` once writes have been
  quiet for 0.3 seconds. It can be used as a context manager.
- **Access log** (`intellilb.accesslog`): `info(AccessLog(...))` and
  `error(...)` write structured JSON lines to standard output and, after
  `init_file_logger(path)`, to that file as well.

## What it does not do

The package has no load balancer program of its own. There is no request
forwarding to backends, no rule-based request router, no middleware
implementations (rate limiting, headers, CORS, basic auth), no metrics
collector and no dashboard. `Router`, `Monitor`, `resolve_middlewares` and
`EntryPoint` take those parts as arguments, so an application has to supply
them.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Using the library

```python
from intellilb.algorithms import RoundRobin
from intellilb.config import ConfigError, load

try:
    cfg = load("config/config.json")
except ConfigError as exc:
    raise SystemExit(f"bad configuration: {exc}")

for name, service in cfg.services.items():
    print(name, service.load_balancer.algorithm, len(service.servers))

rr = RoundRobin()
print(rr.select(["http://localhost:8001", "http://localhost:8002"], {}, "LOW"))
```

A minimal configuration file:

```json
{
  "listen_port": 8080,
  "dashboard_port": 8081,
  "algorithm": "weighted",
  "servers": [
    {"url": "http://localhost:8001", "name": "Alpha", "weight": 5},
    {"url": "http://localhost:8002", "name": "Beta", "weight": 3}
  ]
}
```

Unset values get defaults: health checks every 5 seconds on `/health` with a
2 second timeout, expecting status 200; a circuit breaker that trips after 3
failures and probes again after 15 seconds; 3 retries; a rate limit of 100
requests per second with a burst of 200; priority timeouts of 5, 10 and 20
seconds for high, medium and low priority; server weight 1; and the access
log at `access.log`.

## Command-line tools

### Simulated backend

```
intellilb-backend 8001 10 Alpha
```

Arguments are the port, the base delay in milliseconds and the server name
(defaults 8001, 10 and `Server`). Every path is answered after the delay
plus up to half of it again, with JSON saying which server handled the
request; `/health` reports status and requests served, and each request to
`/toggle` flips the server between healthy and failing with HTTP 500.

### Load test

```
intellilb-loadtest --requests 300 --concurrency 20 --high 0.2 --url http://localhost:8080/api/test
```

Sends a fixed number of requests, the first fraction of them marked
`X-Priority: HIGH`, and prints throughput, success rate, average and 95th
percentile latency, and how the successful requests were spread over the
backends (by their `X-Handled-By` header).

### Chaos and stress

```
intellilb-chaos --url http://localhost:8080/api/chaos --concurrency 50 --interval 12
```

Keeps concurrent workers sending requests to the load balancer, a quarter of
them with HIGH priority, printing a tally every 5 seconds, while toggling a
random backend on ports 8001 to 8004 into or out of failure every
`--interval` seconds.

### Oscillating load

```
intellilb-dynamic-load --url http://localhost:8080/api/dynamic
```

Sends a burst of requests each second whose size follows a 30-second sine
wave between 5 and 25 requests.

### Failure and recovery timing

```
intellilb-failure-test --url http://localhost:8080/api/test
```

Sends a LOW priority request every half second and logs when failures start
and how long it takes until the first successful response after them. Stop
or toggle a backend while it runs to see detection and recovery times.