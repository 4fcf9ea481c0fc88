# micrort

Tools for operating a small microservice environment:

- a command line and an interactive shell for calling services, browsing a
  service registry and inspecting the network (`micrort.cli`)
- the operations behind those commands as plain functions
  (`micrort.commands`), working against a registry (`micrort.registry`) and
  an RPC client (`micrort.client`)
- a chatops bot that answers text commands and forwards unknown ones to
  command services in its namespace (`micrort.bot`, `micrort.botcommands`)
- a WSGI middleware that counts responses by status class over rolling
  windows, with a JSON and HTML stats page (`micrort.stats`)
- a WSGI application that turns JSON or form posts into RPC calls
  (`micrort.rpchandler`)
- API tokens sealed in the Branca format and a client for a token service
  (`micrort.token`, `micrort.branca`)
- an update notifier that polls for new builds (`micrort.update`)
- a summariser for published usage figures (`micrort.usagestats`)

## Installation

```
pip install micrort
```

## The command line

Services are reached through an HTTP gateway that exposes a `/rpc`
endpoint. Its address is set with `--api-address` (or `MICRO_API_ADDRESS`),
by default `http://localhost:8080`.

```
micrort call go.micro.srv.greeter Say.Hello '{"name": "John"}'
micrort services
micrort publish events '{"hello": "world"}'
micrort stats go.micro.srv.greeter
micrort health check go.micro.srv.greeter
micrort network nodes
micrort network routes --service go.micro.srv.greeter
micrort network dns resolve --domain network.micro.mu
micrort list services
micrort register service '{"name": "go.micro.srv.greeter", "nodes": [{"id": "greeter-1", "address": "127.0.0.1:9090"}]}'
micrort get service go.micro.srv.greeter
micrort deregister service '{"name": "go.micro.srv.greeter", "nodes": [{"id": "greeter-1"}]}'
```

`call` takes `--address` to reach one instance, `-o raw` to print the raw
response and `--metadata key=value` (repeatable) to pass call metadata.
The `network` group also has `connect`, `connections`, `graph`, `services`
and `dns advertise` / `dns remove`.

The registry used by `register`, `deregister`, `get`, `list services`,
`health` and `stats` lives in memory. To keep it between runs, pass
`--registry-file path.json` (or set `MICRO_REGISTRY_FILE`); it is loaded
before each command, and `register` and `deregister` write it back.

Running `micrort` with no command prints the help and exits with status 1.

## The shell

```
micrort cli
```

starts an interactive prompt (`micro> `). Type a command name followed by
its arguments:

```
micro> list services
micro> get go.micro.srv.greeter
micro> call go.micro.srv.greeter Say.Hello {"name": "John"}
micro> health go.micro.srv.greeter
micro> publish events {"hello": "world"}
micro> help
micro> quit
```

`?` is an alias for `help` and `ls` for `list`; `exit` works like `quit`.
Unknown commands print `unknown command`. Registrations made inside the
shell are not written to the registry file.

The shell can be driven from code:

```python
from micrort.cli import Shell
from micrort.client import HTTPClient
from micrort.registry import MemoryRegistry

shell = Shell(HTTPClient("http://localhost:8080"), MemoryRegistry())
print(shell.execute("list services"))
```

## Registry and commands

```python
from micrort.registry import MemoryRegistry, Service
from micrort import commands

registry = MemoryRegistry()
registry.register(Service.from_dict({
    "name": "go.micro.srv.greeter",
    "version": "latest",
    "nodes": [{"id": "greeter-1", "address": "127.0.0.1:9090"}],
}))

print(commands.list_services(registry))
print(commands.get_service(registry, ["go.micro.srv.greeter"]))
```

Network commands (`network_nodes`, `network_routes`, `network_services`,
`network_graph`, `network_connect`, `network_connections`) and DNS commands
(`network_dns_advertise`, `network_dns_remove`, `network_dns_resolve`) take a
`micrort.client.Client` as their first argument; `HTTPClient` is the one
that goes through the gateway. Errors reported by services are raised as
`micrort.client.MicroError`; bad arguments raise
`micrort.commands.CommandError`.

## The bot

`micrort.bot.Bot` reads text events from `Input` objects, answers the
built-in commands from `micrort.botcommands.builtin_commands` (`echo`,
`hello`, `ping`, `time`, `list`, `get`, `health`, `call`, `register`,
`deregister`, `the three laws`, `help`) and forwards anything else to a
service named `<namespace>.<first word>` found in the registry.
`Input` and `Conn` are abstract: supply your own to connect the bot to a
chat system.

## Request stats

```python
from micrort.stats import Stats

stats = Stats()
stats.start()
app = stats.middleware(app)     # wrap any WSGI application
# serve stats.handler at a path of your choice:
# JSON when requested with Content-Type application/json, an HTML chart otherwise
```

A new counter window opens every five seconds; up to 23 windows are kept.

## RPC over HTTP

`micrort.rpchandler.RPCHandler(client)` is a WSGI application. POST a JSON
body such as

```json
{"service": "go.micro.srv.greeter", "endpoint": "Say.Hello", "request": {"name": "John"}}
```

or the same fields as a form, and it answers with the service's JSON
response. A `Timeout` header (seconds) bounds the call, and request headers
are passed on as call metadata. Other methods than POST get a 405.

## Tokens

The key must be 32 bytes; longer keys are cut to their first 32 characters.

```python
from micrort.token import new_token, decode_token

key = "secret" * 6  # 36 characters, cut to 32

tok = new_token()
tok.claims["email"] = "someone@example.com"
sealed = tok.encode(key)

same = decode_token(key, sealed)
same.validate()
```

`micrort.token.TokenAPI` asks a token service for one-time passes and
generates, lists, verifies and revokes tokens. `micrort.branca` has the
underlying `branca_encode` / `branca_decode` and base62 helpers.

## Update notifications

`micrort.update.new_notifier(version)` returns a `Notifier` polling the
default URL every minute. `notify()` returns an iterator of update events,
one whenever a build newer than `version` (unix seconds) appears; `close()`
ends it. `check()` polls once. `fan_out(events, services)` repeats each
event once per named service.

## Usage figures

`micrort.usagestats.fetch_usage()` downloads the figures,
`summarize(results)` folds them into totals, daily highs and monthly totals
per service, and `UsageSummary.render()` prints the report.

## What this package does not do

It does not start or supervise services, and it runs no registry, broker,
network or token service of its own: the command line reaches services only
through an HTTP gateway, and its registry is in memory or in a JSON file.
The bot comes with no chat integrations, and nothing here sends usage
reports.

## Running the tests

```
pip install "micrort[test]"
pytest
```