APP_HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Torrent Streamer</title>
    <style>
        :root {
            --twitter-blue: #1DA1F2; --twitter-green: #17BF63; --twitter-red: #E0245E;
            --twitter-black: #14171A; --twitter-dark-gray: #657786; --twitter-light-gray: #AAB8C2;
            --twitter-white: #FFFFFF; --background-color: #15202B; --card-background: #192734;
            --border-color: #38444d; --font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
            --square-radius: 8px;
        }
        body { background-color: var(--background-color); color: var(--twitter-white); font-family: var(--font-family); margin: 0; padding: 20px; box-sizing: border-box; display: flex; justify-content: center; min-height: 100vh; }
        .wrapper { display: flex; flex-direction: column; width: 100%; max-width: 720px; gap: 16px; }
        .card { background-color: var(--card-background); border: 1px solid var(--border-color); border-radius: var(--square-radius); padding: 24px; }
        .card-header h1 { font-size: 23px; margin: 0; }
        .card-header p { color: var(--twitter-light-gray); font-size: 15px; margin-top: 4px; }
        input[type=text] { background-color: var(--background-color); border: 1px solid var(--twitter-dark-gray); border-radius: var(--square-radius); color: var(--twitter-white); font-size: 15px; padding: 16px; width: 100%; box-sizing: border-box; }
        input[type=text]:focus { outline: none; border-color: var(--twitter-blue); }
        button { background-color: var(--twitter-blue); color: var(--twitter-black); border: none; border-radius: var(--square-radius); font-size: 15px; font-weight: bold; padding: 12px 20px; cursor: pointer; }
        button:hover { background-color: #1A91DA; }
        button.secondary { background-color: var(--border-color); color: var(--twitter-white); }
        button.danger { background-color: var(--twitter-red); color: var(--twitter-white); }
        .row { display: flex; gap: 8px; margin-top: 12px; flex-wrap: wrap; align-items: center; }
        #status-text { color: var(--twitter-light-gray); font-size: 15px; }
        #progress-section, #media-section { display: none; }
        .progress-bar { height: 8px; background-color: var(--background-color); border-radius: 4px; overflow: hidden; margin-top: 8px; }
        .progress-fill { height: 100%; width: 0; background-color: var(--twitter-green); transition: width 0.5s; }
        video { width: 100%; border-radius: var(--square-radius); background-color: #000; }
        .file-info { color: var(--twitter-light-gray); font-size: 14px; margin-top: 8px; }
    </style>
</head>
<body>
    <div class="wrapper">
        <div class="card">
            <div class="card-header"><h1>Torrent Streamer</h1><p>Watch while it downloads. Each browser gets its own session.</p></div>
            <form id="stream-form"><input type="text" id="magnet" placeholder="Paste a magnet link" required><div class="row"><button type="submit">Start Streaming</button><button type="button" class="danger" id="reset-btn">Reset Session</button></div></form>
            <p id="status-text">Ready to stream</p>
            <div id="progress-section"><div class="progress-bar"><div class="progress-fill" id="progress-fill"></div></div><p class="file-info" id="progress-text"></p></div>
        </div>
        <div class="card" id="media-section">
            <video id="video-player" controls preload="auto" crossorigin="anonymous"></video>
            <p class="file-info" id="file-info"></p>
            <div class="row" id="subtitle-controls"><button type="button" class="secondary" data-track="">None</button></div>
            <div class="row"><input type="file" id="subtitle-file" accept=".srt,.vtt,.ass,.ssa,.sub"><button type="button" class="secondary" id="upload-btn">Upload Subtitle</button></div>
        </div>
    </div>
    <script>
      document.addEventListener('DOMContentLoaded', function() {
          const form=document.getElementById('stream-form'),magnetInput=document.getElementById('magnet'),statusText=document.getElementById('status-text'),progressSection=document.getElementById('progress-section'),progressFill=document.getElementById('progress-fill'),progressText=document.getElementById('progress-text'),mediaSection=document.getElementById('media-section'),video=document.getElementById('video-player'),fileInfo=document.getElementById('file-info'),subtitleControls=document.getElementById('subtitle-controls');
          const FLAGS={en:"🇺🇸",fr:"🇫🇷",es:"🇪🇸",de:"🇩🇪",ja:"🇯🇵",zh:"🇨🇳",ko:"🇰🇷",ru:"🇷🇺",it:"🇮🇹",pt:"🇵🇹",nl:"🇳🇱"};
          let statusInterval=null,progressInterval=null,currentSubtitles='[]';
          function setSubtitle(path,lang){Array.from(video.querySelectorAll('track')).forEach(t=>t.remove());if(!path)return;const track=document.createElement('track');track.kind='subtitles';track.src=path;track.srclang=lang==='und'?'':lang;track.default=true;video.appendChild(track);track.addEventListener('load',()=>{track.track.mode='showing'})}
          function renderSubtitles(subs){const key=JSON.stringify(subs);if(key===currentSubtitles)return;currentSubtitles=key;subtitleControls.querySelectorAll('button:not(:first-child)').forEach(b=>b.remove());subs.forEach(s=>{const b=document.createElement('button');b.type='button';b.className='secondary';b.textContent=`${FLAGS[s.lang]||'🌐'} ${s.name}`;b.onclick=()=>setSubtitle(s.path,s.lang);subtitleControls.appendChild(b)})}
          subtitleControls.firstElementChild.onclick=()=>setSubtitle('', '');
          function updateStatus(){fetch('/status').then(r=>r.json()).then(res=>{if(!res.success)return;const d=res.data;statusText.textContent=d.status;if(d.downloading){progressSection.style.display='block';progressFill.style.width=`${d.progress}%`;progressText.textContent=`${d.progress.toFixed(1)}% downloaded`}else{progressSection.style.display='none'}if(d.videoAvailable){mediaSection.style.display='block';fileInfo.textContent=`${(d.fileType||'file').toUpperCase()} · ${d.fileSizeHuman}`;if(!video.src.endsWith(d.videoUrl)){video.src=d.videoUrl}renderSubtitles(d.subtitles||[])}else{mediaSection.style.display='none'}}).catch(e=>console.error("Status update error:",e))}
          function startProgressPolling(){if(progressInterval)clearInterval(progressInterval);progressInterval=setInterval(()=>{fetch('/progress').then(r=>r.json()).then(d=>{progressFill.style.width=`${d.progress}%`;progressText.textContent=`${d.progress.toFixed(1)}% downloaded`;if(d.phase==='completed'){clearInterval(progressInterval);progressInterval=null;updateStatus()}}).catch(e=>{})},1000)}
          form.addEventListener('submit',function(e){e.preventDefault();const m=magnetInput.value.trim();if(!m)return;fetch('/stream',{method:'POST',headers:{'Content-Type':'application/json'},body:JSON.stringify({magnet:m})}).then(r=>r.json()).then(res=>{if(res.success){startProgressPolling();updateStatus()}else{alert(res.error||'Failed to start stream')}}).catch(()=>alert('Network error occurred'))});
          document.getElementById('upload-btn').addEventListener('click',function(){const input=document.getElementById('subtitle-file');if(!input.files.length){alert('Please select a subtitle file first');return}const fd=new FormData();fd.append('subtitle',input.files[0]);fetch('/upload-subtitle',{method:'POST',body:fd}).then(r=>r.json()).then(res=>{if(res.success){input.value='';updateStatus()}else{alert(res.error||'Upload failed')}}).catch(()=>alert('Upload failed'))});
          document.getElementById('reset-btn').addEventListener('click',function(){fetch('/reset-session',{method:'POST'}).then(r=>r.json()).then(res=>{if(!res.success)return;if(progressInterval)clearInterval(progressInterval);progressInterval=null;video.pause();video.removeAttribute('src');video.load();currentSubtitles='[]';magnetInput.value='';updateStatus()})});
          updateStatus();statusInterval=setInterval(updateStatus,3000);
      });
    </script>
</body>
</html>
"""
